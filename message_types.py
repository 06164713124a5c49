# Client -> server events
USER_CONNECT = "user-connect"  # {id, username}
JOIN_ROOM = "join-room"  # {roomId, userId, username, roomName?, maxParticipants?}
LEAVE_ROOM = "leave-room"  # {roomId}

# Bidirectional
SIGNAL = "signal"  # {type, from, to?, roomId?, data?}

# Server -> client events
ROOM_JOINED = "room-joined"  # {id, name, participants, maxParticipants} - joiner only
USER_JOINED = "user-joined"  # {id, username} - other members
USER_LEFT = "user-left"  # {userId} - remaining members
ROOM_PARTICIPANTS = "room-participants"  # [{id, username}, ...]
ERROR = "error"  # {code, message, roomId?}

# signal.type values
OFFER = "offer"
ANSWER = "answer"
CANDIDATE = "candidate"
HANGUP = "hangup"

SIGNAL_TYPES = (OFFER, ANSWER, CANDIDATE, HANGUP)

# error.code values not backed by an exception class
BAD_REQUEST = "bad-request"
