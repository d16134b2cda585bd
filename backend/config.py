import os


def _flag(name, default='false'):
    return os.environ.get(name, default).lower() in ('1', 'true', 'yes')


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'you-will-never-guess'
    # Game defaults (seconds)
    COUNTDOWN_SEC = int(os.environ.get('COUNTDOWN_SEC', '5'))
    DEFAULT_ANSWER_TIME = int(os.environ.get('DEFAULT_ANSWER_TIME', '10'))
    MIN_ANSWER_TIME = int(os.environ.get('MIN_ANSWER_TIME', '5'))
    MAX_ANSWER_TIME = int(os.environ.get('MAX_ANSWER_TIME', '60'))
    # Statement sets each participant submits
    DEFAULT_ROUNDS_COUNT = int(os.environ.get('DEFAULT_ROUNDS_COUNT', '1'))
    MAX_ROUNDS_COUNT = int(os.environ.get('MAX_ROUNDS_COUNT', '20'))
    MAX_TEAMS = int(os.environ.get('MAX_TEAMS', '4'))
    # Toast duration for show_message (ms)
    SHOW_MESSAGE_DURATION_MS = int(os.environ.get('SHOW_MESSAGE_DURATION_MS', '3000'))
    # External TeamPlay collaborator
    ENABLE_API_VALIDATION = _flag('ENABLE_API_VALIDATION')
    ENABLE_TEAMPLAY_LOGGING = _flag('ENABLE_TEAMPLAY_LOGGING')
    TEAMPLAY_API_URL = os.environ.get('TEAMPLAY_API_URL', 'https://admin.team-play.online')
    TEAMPLAY_API_TOKEN = os.environ.get('TEAMPLAY_API_TOKEN')
    API_TIMEOUT_SEC = float(os.environ.get('API_TIMEOUT_SEC', '5'))

    # Heartbeat interval for timer worker logs (sec). 0 disables.
    TIMER_HEARTBEAT_SEC = int(os.environ.get('TIMER_HEARTBEAT_SEC', '0'))

    EXAMPLE_STATEMENTS = [
        [
            "I've visited 15 different countries",
            "I can speak three languages fluently",
            "I once won a pie-eating contest",
        ],
        [
            "I have a collection of over 200 vinyl records",
            "I've never broken a bone in my body",
            "I was an extra in a popular TV show",
        ],
        [
            "I can juggle five balls at once",
            "I once met a famous celebrity at a grocery store",
            "I'm afraid of heights",
        ],
        [
            "I've been skydiving twice",
            "I can play the piano by ear",
            "I've eaten insects as a delicacy in Thailand",
        ],
    ]
