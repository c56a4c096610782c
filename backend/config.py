import os

class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'you-will-never-guess'
    # Socket.IO namespace shared by every game
    SOCKETIO_NAMESPACE = os.environ.get('SOCKETIO_NAMESPACE', '/ws')
    # Auto-continuation timers (seconds)
    AUTO_NEXT_ROUND_SEC = float(os.environ.get('AUTO_NEXT_ROUND_SEC', '3'))
    AUTO_CALL_DELAY_SEC = float(os.environ.get('AUTO_CALL_DELAY_SEC', '5'))
    # Empty rooms linger this long so a refreshing player can come back. 0 removes immediately.
    ROOM_GRACE_SEC = float(os.environ.get('ROOM_GRACE_SEC', '30'))
    # Hold time between "room-terminated" and tearing the room down
    TERMINATE_DELAY_SEC = float(os.environ.get('TERMINATE_DELAY_SEC', '2'))
    # Chat limits
    CHAT_MAX_LENGTH = int(os.environ.get('CHAT_MAX_LENGTH', '200'))
    CHAT_HISTORY_LIMIT = int(os.environ.get('CHAT_HISTORY_LIMIT', '50'))
    ROUND_HISTORY_LIMIT = int(os.environ.get('ROUND_HISTORY_LIMIT', '50'))
    # Bingo ends once this many distinct players have won a pattern
    BINGO_MAX_WINNERS = int(os.environ.get('BINGO_MAX_WINNERS', '3'))
    # Used by `flask reap-idle-rooms` when no --minutes is given
    IDLE_ROOM_MINUTES = int(os.environ.get('IDLE_ROOM_MINUTES', '60'))
