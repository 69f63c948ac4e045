"""
Notifier de manifestes: envoi par e-mail (SendGrid v3) à la compagnie du vol.
- dispatch(order, bags) -> message_id (en-tête X-Message-Id de SendGrid).
- Toute défaillance (clé absente, réseau, timeout, refus) devient NotifierError.
- N'est PAS idempotent: l'unicité de l'envoi est garantie par le workflow.
"""
import base64
import logging
import uuid
from typing import Any, Dict, Iterable, Optional

import httpx

from bag2go.config import (
    MANIFEST_SANDBOX,
    MANIFEST_TIMEOUT_SECONDS,
    SENDGRID_API_KEY,
    SENDGRID_API_URL,
    SENDGRID_FROM,
)
from bag2go.errors import NotifierError
from bag2go.manifests.destinations import AirlineDestinations, default_destinations
from bag2go.manifests.manifest import build_manifest_rows, manifest_filename, manifest_json, manifest_subject

logger = logging.getLogger(__name__)


class SendGridManifestNotifier:
    def __init__(
        self,
        api_key: str = SENDGRID_API_KEY,
        sender: str = SENDGRID_FROM,
        destinations: Optional[AirlineDestinations] = None,
        sandbox: bool = MANIFEST_SANDBOX,
        timeout: float = MANIFEST_TIMEOUT_SECONDS,
        api_url: str = SENDGRID_API_URL,
        client: Optional[httpx.Client] = None,
    ):
        self.api_key = api_key
        self.sender = sender
        self.destinations = destinations or default_destinations()
        self.sandbox = sandbox
        self.timeout = timeout
        self.api_url = api_url
        self._client = client

    def build_message(self, order, bags: Iterable) -> Dict[str, Any]:
        """
        Construit le body /v3/mail/send.
        - Destinataire: adresse manifeste de la compagnie (repli opérations si code inconnu).
        - Pièce jointe: manifeste JSON encodé en base64.
        - sandbox_mode: actif hors production (aucun e-mail réellement délivré).
        """
        rows = build_manifest_rows(order, bags)
        to = self.destinations.resolve(order.airline_code)
        if not self.destinations.is_known(order.airline_code):
            logger.warning("manifests.notifier code compagnie inconnu airline=%s order_id=%s -> %s", order.airline_code, order.id, to)
        return {
            "personalizations": [{"to": [{"email": to}]}],
            "from": {"email": self.sender},
            "subject": manifest_subject(order),
            "content": [{"type": "text/plain", "value": "Attached is the baggage manifest."}],
            "attachments": [{
                "content": base64.b64encode(manifest_json(rows).encode("utf-8")).decode("ascii"),
                "filename": manifest_filename(order),
                "type": "application/json",
                "disposition": "attachment",
            }],
            "mail_settings": {"sandbox_mode": {"enable": bool(self.sandbox)}},
        }

    def _post(self, message: Dict[str, Any]) -> httpx.Response:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        if self._client is not None:
            return self._client.post(self.api_url, json=message, headers=headers, timeout=self.timeout)
        return httpx.post(self.api_url, json=message, headers=headers, timeout=self.timeout)

    def dispatch(self, order, bags: Iterable) -> str:
        if not self.api_key:
            raise NotifierError("SENDGRID_API_KEY manquant")
        message = self.build_message(order, bags)
        try:
            resp = self._post(message)
        except httpx.TimeoutException as e:
            raise NotifierError(f"Timeout SendGrid après {self.timeout}s") from e
        except httpx.HTTPError as e:
            raise NotifierError(f"Erreur réseau SendGrid: {e}") from e

        if not 200 <= resp.status_code < 300:
            detail = None
            try:
                errors = (resp.json() or {}).get("errors") or []
                detail = errors[0].get("message") if errors else None
            except Exception:
                detail = resp.text
            raise NotifierError(f"SendGrid a refusé le manifeste (status {resp.status_code}): {detail or 'sans détail'}")

        message_id = resp.headers.get("x-message-id")
        if not message_id:
            # L'envoi est accepté: on enregistre un id local pour ne jamais renvoyer
            message_id = f"local-{uuid.uuid4().hex}"
            logger.warning("manifests.notifier X-Message-Id absent order_id=%s -> %s", order.id, message_id)
        logger.info("manifests.notifier sent order_id=%s to=%s message_id=%s", order.id, message["personalizations"][0]["to"][0]["email"], message_id)
        return message_id
