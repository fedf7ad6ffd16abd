import asyncio
import aiohttp
from typing import Dict, Optional
from datetime import datetime
import logging
from config.settings import settings

logger = logging.getLogger(__name__)


class NotificationClient:
    """Delivers notification events to an external webhook"""

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        token: Optional[str] = None
    ):
        self.webhook_url = webhook_url if webhook_url is not None else settings.NOTIFICATION_WEBHOOK_URL
        self.token = token if token is not None else settings.NOTIFICATION_WEBHOOK_TOKEN
        self.timeout = settings.NOTIFICATION_TIMEOUT
        self.retry_attempts = settings.NOTIFICATION_RETRY_ATTEMPTS
        self.retry_delay = settings.NOTIFICATION_RETRY_DELAY

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url)

    async def send_event(self, event_type: str, payload: Dict) -> Dict:
        """
        Post an event to the webhook

        Args:
            event_type: Notification type, e.g. approval_requested
            payload: Event body

        Returns:
            Dict with success status; delivery problems are reported, not raised
        """
        if not self.enabled:
            return {
                'success': False,
                'error': 'No notification webhook configured'
            }

        headers = self._build_headers()
        body = self._format_payload(event_type, payload)

        # Send with retries
        for attempt in range(self.retry_attempts):
            try:
                async with aiohttp.ClientSession() as session:
                    async with session.post(
                        url=self.webhook_url,
                        headers=headers,
                        json=body,
                        timeout=aiohttp.ClientTimeout(total=self.timeout)
                    ) as response:

                        if response.status in [200, 201, 202, 204]:
                            logger.info(f"Notification {event_type} delivered")
                            return {'success': True, 'status': response.status}

                        elif response.status == 429 or response.status >= 500:
                            logger.warning(
                                f"Notification webhook returned {response.status}, retrying..."
                            )
                            if attempt < self.retry_attempts - 1:
                                await asyncio.sleep(self.retry_delay * (attempt + 1))
                                continue

                        error_text = await response.text()
                        logger.error(
                            f"Notification webhook error {response.status}: {error_text}"
                        )
                        return {
                            'success': False,
                            'error': f"Webhook returned {response.status}",
                            'details': error_text
                        }

            except asyncio.TimeoutError:
                logger.error(f"Timeout delivering {event_type} (attempt {attempt + 1})")
                if attempt < self.retry_attempts - 1:
                    await asyncio.sleep(self.retry_delay)
                    continue
                return {
                    'success': False,
                    'error': 'Request timeout'
                }

            except aiohttp.ClientError as e:
                logger.error(f"Client error delivering {event_type}: {e}")
                if attempt < self.retry_attempts - 1:
                    await asyncio.sleep(self.retry_delay)
                    continue
                return {
                    'success': False,
                    'error': str(e)
                }

        return {
            'success': False,
            'error': f'Failed after {self.retry_attempts} attempts'
        }

    def _build_headers(self) -> Dict[str, str]:
        headers = {
            'Content-Type': 'application/json',
            'User-Agent': f"{settings.APP_NAME}/{settings.APP_VERSION}"
        }
        if self.token:
            headers['Authorization'] = f"Bearer {self.token}"
        return headers

    @staticmethod
    def _format_payload(event_type: str, payload: Dict) -> Dict:
        return {
            'event': event_type,
            'sent_at': datetime.utcnow().isoformat(),
            'data': payload
        }
