from fractions import Fraction

from av import AudioFrame, VideoFrame

from client.media import LocalMedia, ToggleableTrack
from tests.fakes import FakeSourceTrack


def test_toggles_flip_flags():
    media = LocalMedia([FakeSourceTrack("audio"), FakeSourceTrack("video")])
    assert not media.is_muted
    assert media.is_video_enabled

    assert media.toggle_audio() is True
    assert media.is_muted
    assert media.toggle_video() is False
    assert not media.is_video_enabled

    assert media.toggle_audio() is False
    assert media.toggle_video() is True


def test_mute_without_audio_track():
    media = LocalMedia([FakeSourceTrack("video")])
    assert media.toggle_audio() is False
    assert media.audio_tracks == []


async def test_muted_track_sends_silence():
    source = FakeSourceTrack("audio")
    frame = AudioFrame(format="s16", layout="mono", samples=160)
    for plane in frame.planes:
        plane.update(bytes([7]) * plane.buffer_size)
    frame.pts = 480
    frame.sample_rate = 48000
    frame.time_base = Fraction(1, 48000)
    source.frames = [frame, frame]
    track = ToggleableTrack(source)

    assert await track.recv() is frame

    track.enabled = False
    silent = await track.recv()
    assert silent is not frame
    assert silent.pts == 480
    assert silent.samples == 160
    assert set(bytes(silent.planes[0])) == {0}


async def test_disabled_video_sends_blank_picture():
    source = FakeSourceTrack("video")
    frame = VideoFrame(width=64, height=48, format="yuv420p")
    frame.pts = 3000
    frame.time_base = Fraction(1, 90000)
    source.frames = [frame]
    track = ToggleableTrack(source)
    track.enabled = False

    blank = await track.recv()
    assert (blank.width, blank.height) == (64, 48)
    assert blank.pts == 3000
    assert set(bytes(blank.planes[0])) == {16}
    assert set(bytes(blank.planes[1])) == {128}


def test_stop_stops_sources():
    source = FakeSourceTrack("audio")
    media = LocalMedia([source])
    media.stop()
    assert source.readyState == "ended"
    assert media.tracks[0].readyState == "ended"
