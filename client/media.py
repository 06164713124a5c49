from typing import List, Optional

from aiortc import MediaStreamTrack
from aiortc.contrib.media import MediaPlayer
from av import AudioFrame, VideoFrame

from logging_config import get_logger

logger = get_logger(__name__)


class ToggleableTrack(MediaStreamTrack):
    """Forwards frames from ``source``; while disabled sends silence or a blank picture.

    Toggling never touches the peer connection, so no renegotiation happens.
    """

    def __init__(self, source: MediaStreamTrack):
        super().__init__()
        self.kind = source.kind
        self.source = source
        self.enabled = True

    async def recv(self):
        frame = await self.source.recv()
        if self.enabled:
            return frame
        if self.kind == "audio":
            return self._silence(frame)
        return self._blank(frame)

    @staticmethod
    def _silence(frame: AudioFrame) -> AudioFrame:
        silent = AudioFrame(format=frame.format.name, layout=frame.layout.name, samples=frame.samples)
        for plane in silent.planes:
            plane.update(bytes(plane.buffer_size))
        silent.pts = frame.pts
        silent.sample_rate = frame.sample_rate
        silent.time_base = frame.time_base
        return silent

    @staticmethod
    def _blank(frame: VideoFrame) -> VideoFrame:
        blank = VideoFrame(width=frame.width, height=frame.height, format="yuv420p")
        luma, *chroma = blank.planes
        luma.update(bytes([16]) * luma.buffer_size)
        for plane in chroma:
            plane.update(bytes([128]) * plane.buffer_size)
        blank.pts = frame.pts
        blank.time_base = frame.time_base
        return blank

    def stop(self):
        super().stop()
        self.source.stop()


class LocalMedia:
    """The client's own audio/video source, shared by every peer session."""

    def __init__(self, tracks: List[MediaStreamTrack], player: Optional[MediaPlayer] = None):
        self.tracks = [ToggleableTrack(track) for track in tracks]
        self._player = player

    @classmethod
    def from_player(cls, path: str, format: str = None, options: dict = None) -> "LocalMedia":
        """Open a file or capture device with aiortc's ``MediaPlayer``."""
        player = MediaPlayer(path, format=format, options=options or {})
        tracks = [track for track in (player.audio, player.video) if track is not None]
        logger.info(f"Opened local media {path}: {[track.kind for track in tracks]}")
        return cls(tracks, player=player)

    @property
    def audio_tracks(self) -> List[ToggleableTrack]:
        return [track for track in self.tracks if track.kind == "audio"]

    @property
    def video_tracks(self) -> List[ToggleableTrack]:
        return [track for track in self.tracks if track.kind == "video"]

    @property
    def is_muted(self) -> bool:
        return bool(self.audio_tracks) and not any(track.enabled for track in self.audio_tracks)

    @property
    def is_video_enabled(self) -> bool:
        return any(track.enabled for track in self.video_tracks)

    def toggle_audio(self) -> bool:
        """Flip every audio track; returns True when now muted."""
        for track in self.audio_tracks:
            track.enabled = not track.enabled
        logger.info(f"Audio {'muted' if self.is_muted else 'unmuted'}")
        return self.is_muted

    def toggle_video(self) -> bool:
        """Flip every video track; returns True when video is now on."""
        for track in self.video_tracks:
            track.enabled = not track.enabled
        logger.info(f"Video {'enabled' if self.is_video_enabled else 'disabled'}")
        return self.is_video_enabled

    def stop(self):
        for track in self.tracks:
            track.stop()
