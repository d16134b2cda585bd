"""Client for the TeamPlay admin API: session-code validation and game logs."""
import logging
from enum import Enum
from typing import List, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

logger = logging.getLogger(__name__)


class ValidationOutcome(str, Enum):
    VALID = 'valid'
    INVALID_CODE = 'invalid_code'
    EXPIRED_CODE = 'expired_code'
    VALIDATION_FAILED = 'validation_failed'
    UNREACHABLE = 'unreachable'

    @property
    def valid(self):
        return self is ValidationOutcome.VALID

    @property
    def message(self):
        return _MESSAGES[self]


_MESSAGES = {
    ValidationOutcome.VALID: '',
    ValidationOutcome.INVALID_CODE: 'Invalid API code. Please check your code and try again.',
    ValidationOutcome.EXPIRED_CODE: 'This API code has expired. Please obtain a new code.',
    ValidationOutcome.VALIDATION_FAILED: 'API validation failed. Please try again later.',
    ValidationOutcome.UNREACHABLE: 'Failed to validate API code. Please check your internet connection.',
}

_STATUS_OUTCOMES = {
    204: ValidationOutcome.VALID,
    404: ValidationOutcome.INVALID_CODE,
    423: ValidationOutcome.EXPIRED_CODE,
}


class TeamPlayClient:
    """
    HTTP client for admin.team-play.online.
    - Retries transient failures with exponential backoff.
    - Never raises: callers get an outcome or a boolean.
    """

    def __init__(self, base_url: str, token: Optional[str], *, timeout: float = 5.0,
                 session: Optional[requests.Session] = None) -> None:
        self.base_url = base_url.rstrip('/')
        self.token = token
        self.timeout = timeout
        self.session = session or self._build_session()

    @staticmethod
    def _build_session() -> requests.Session:
        session = requests.Session()
        retry = Retry(
            total=2,
            backoff_factor=0.5,
            status_forcelist=(429, 500, 502, 503, 504),
            allowed_methods=frozenset({'GET', 'POST'}),
            respect_retry_after_header=True,
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retry)
        session.mount('http://', adapter)
        session.mount('https://', adapter)
        return session

    @property
    def _headers(self):
        return {'Authorization': self.token or ''}

    def validate_code(self, api_code: str) -> ValidationOutcome:
        url = f"{self.base_url}/api/validate-code/{api_code}"
        try:
            response = self.session.get(url, headers=self._headers, timeout=self.timeout)
        except requests.RequestException:
            logger.warning(f"[validate] request failed url={url}", exc_info=True)
            return ValidationOutcome.UNREACHABLE
        outcome = _STATUS_OUTCOMES.get(response.status_code, ValidationOutcome.VALIDATION_FAILED)
        logger.info(f"[validate] status={response.status_code} outcome={outcome.value}")
        return outcome

    def send_game_log(self, game_code: str, api_code: Optional[str], events: List[dict]) -> bool:
        payload = {
            'game_session_code': api_code,
            'log_data': {
                'game_code': game_code,
                'api_code': api_code,
                'game_events': events,
            },
        }
        try:
            response = self.session.post(
                f"{self.base_url}/api/save-game-log",
                json=payload,
                headers=self._headers,
                timeout=self.timeout,
            )
        except requests.RequestException:
            logger.error(f"[game-log] session={game_code} request failed", exc_info=True)
            return False
        if response.status_code != 201:
            logger.error(f"[game-log] session={game_code} status={response.status_code} body={response.text[:200]}")
            return False
        logger.info(f"[game-log] session={game_code} events={len(events)} sent")
        return True
