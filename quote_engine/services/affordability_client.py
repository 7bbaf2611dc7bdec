"""
HTTP client for the external group ICHRA affordability API.
"""

import logging
import time
from typing import Any, Dict, List, Optional

import requests

from quote_engine.config import EngineConfig
from quote_engine.errors import (
    AffordabilityTrialLimitExceeded,
    ExternalCallError,
    QuoteEngineError,
)
from quote_engine.models import AffordabilityRequest
from quote_engine.services.collaborators import ExternalAffordabilityAPI

logger = logging.getLogger(__name__)


class AffordabilityAPIClient(ExternalAffordabilityAPI):
    """Affordability API over requests. Errors map to engine errors for the scheduler."""

    API_KEY_HEADER = "Vericred-Api-Key"
    API_VERSION = "v6"

    def __init__(self, base_url: str, api_key: str, timeout: float = 30,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            self.API_KEY_HEADER: api_key,
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Accept-Version": self.API_VERSION,
        })

    @classmethod
    def from_config(cls, config: EngineConfig) -> "AffordabilityAPIClient":
        return cls(config.affordability_api_base_url, config.affordability_api_key,
                   timeout=config.affordability_api_timeout)

    def submit(self, group_external_id: str, request: AffordabilityRequest) -> Dict[str, Any]:
        data = self._request("POST", f"/groups/{group_external_id}/ichra_affordability_calculations",
                             json=request.to_payload())
        calculation = data.get('ichra_affordability_calculation', data)
        return {
            'calculation_id': str(calculation.get('id', '')),
            'status': calculation.get('status'),
        }

    def get(self, calculation_id: str) -> Dict[str, Any]:
        data = self._request("GET", f"/ichra_affordability_calculations/{calculation_id}")
        return {
            'status': data.get('status'),
            'overall_affordability': data.get('overall_affordability'),
            'summary': data.get('summary'),
            'error': data.get('error'),
        }

    def get_members(self, calculation_id: str) -> List[Dict[str, Any]]:
        data = self._request("GET", f"/ichra_affordability_calculations/{calculation_id}/members")
        if isinstance(data, list):
            return data
        return data.get('members', [])

    def _request(self, method: str, path: str, **kwargs) -> Any:
        url = f"{self.base_url}{path}"
        start = time.time()
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except (requests.Timeout, requests.ConnectionError) as e:
            logger.warning(f"AFFORDABILITY API: {method} {path} transport error: {type(e).__name__}")
            raise ExternalCallError(f"{method} {path} failed: {type(e).__name__}") from e

        duration = time.time() - start
        logger.info(f"AFFORDABILITY API: {method} {path} -> {response.status_code} in {duration:.2f}s")

        if response.ok:
            return response.json() if response.content else {}
        raise self._parse_error(response, path)

    @staticmethod
    def _parse_error(response: requests.Response, path: str) -> QuoteEngineError:
        try:
            body = response.json()
        except ValueError:
            body = {}
        message = str(body.get('message') or body.get('error') or response.reason or 'Unknown API error') \
            if isinstance(body, dict) else str(body)
        status = response.status_code
        details = {'path': path, 'status_code': status, 'message': message}

        if status == 429 and 'ICHRA' in message:
            return AffordabilityTrialLimitExceeded(
                "ICHRA affordability calculation limit reached", details)
        if status == 403 and 'quota' in message.lower():
            return AffordabilityTrialLimitExceeded("Affordability API trial quota exceeded", details)
        if status == 401:
            return ExternalCallError("Affordability API authentication failed", status, details)
        return ExternalCallError(f"Affordability API error {status}: {message}", status, details)
