"""Detection engines: the remote secret-detection service and the local detect-secrets scan."""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable, Mapping
from typing import Any

import httpx
from detect_secrets.core.scan import scan_line
from detect_secrets.settings import transient_settings

from push_guard.config import DetectionConfig
from push_guard.events import AuditLogger
from push_guard.models import (
    Exclusion,
    ExclusionType,
    Finding,
    ScanPayload,
    ScanResponse,
    ScanStatus,
)

logger = logging.getLogger(__name__)

SDS_DISABLED_MESSAGE = "SDS is disabled: FF: %s, SaaS: %s, Non-Dedicated: %s"

EXCLUSION_TYPE_UNSPECIFIED = "EXCLUSION_TYPE_UNSPECIFIED"
EXCLUSION_TYPE_MAP: dict[ExclusionType, str] = {
    ExclusionType.RULE: "EXCLUSION_TYPE_RULE",
    ExclusionType.PATH: "EXCLUSION_TYPE_PATH",
    ExclusionType.RAW_VALUE: "EXCLUSION_TYPE_RAW_VALUE",
}
_WIRE_EXCLUSION_TYPES = {value: key for key, value in EXCLUSION_TYPE_MAP.items()}

SCAN_ENDPOINT = "/scan"

# Pattern-based detectors only.
LOCAL_SCANNER_CONFIG: dict[str, Any] = {
    "plugins_used": [
        {"name": "AWSKeyDetector"},
        {"name": "ArtifactoryDetector"},
        {"name": "AzureStorageKeyDetector"},
        {"name": "BasicAuthDetector"},
        {"name": "CloudantDetector"},
        {"name": "DiscordBotTokenDetector"},
        {"name": "GitHubTokenDetector"},
        {"name": "GitLabTokenDetector"},
        {"name": "IbmCloudIamDetector"},
        {"name": "IbmCosHmacDetector"},
        {"name": "JwtTokenDetector"},
        {"name": "MailchimpDetector"},
        {"name": "NpmDetector"},
        {"name": "PrivateKeyDetector"},
        {"name": "SendGridDetector"},
        {"name": "SlackDetector"},
        {"name": "SoftlayerDetector"},
        {"name": "SquareOAuthDetector"},
        {"name": "StripeDetector"},
        {"name": "TwilioKeyDetector"},
    ],
}


def build_exclusions(
    exclusions: Iterable[Exclusion] | Mapping[Any, Iterable[Exclusion]],
) -> list[dict[str, str]]:
    """Flatten exclusions (optionally grouped by type) into the wire format."""
    if isinstance(exclusions, Mapping):
        flattened = [item for group in exclusions.values() for item in group]
    else:
        flattened = list(exclusions)
    return [
        {
            "exclusion_type": EXCLUSION_TYPE_MAP.get(item.type, EXCLUSION_TYPE_UNSPECIFIED),
            "value": item.value,
        }
        for item in flattened
    ]


def build_scan_request(
    payloads: list[ScanPayload],
    exclusions: Iterable[Exclusion] | Mapping[Any, Iterable[Exclusion]] = (),
    tags: list[str] | None = None,
) -> dict[str, Any]:
    return {
        "payloads": [payload.to_dict() for payload in payloads],
        "exclusions": build_exclusions(exclusions),
        "tags": list(tags or []),
    }


def parse_scan_response(body: Mapping[str, Any]) -> ScanResponse:
    """Convert a decoded JSON response into a ScanResponse.

    Unrecognized status values are kept raw so the response handler can report them.
    """
    raw_status = body.get("status")
    status = ScanStatus.parse(raw_status)

    results: list[Finding] = []
    for item in body.get("results") or []:
        raw_finding_status = item.get("status")
        finding_status = ScanStatus.parse(raw_finding_status)
        line_number = item.get("line_number")
        results.append(
            Finding(
                blob_reference=str(item.get("payload_id") or item.get("blob_reference") or ""),
                status=finding_status if finding_status is not None else raw_finding_status,
                line_number=int(line_number) if line_number is not None else None,
                detector_id=str(item.get("type") or item.get("detector_id") or ""),
                description=str(item.get("description") or ""),
            )
        )

    applied: list[Exclusion] = []
    for item in body.get("applied_exclusions") or []:
        exclusion_type = _WIRE_EXCLUSION_TYPES.get(str(item.get("exclusion_type", "")))
        if exclusion_type is None:
            continue
        applied.append(Exclusion(type=exclusion_type, value=str(item.get("value", ""))))

    metadata = body.get("metadata")
    return ScanResponse(
        status=status if status is not None else raw_status,
        results=results,
        metadata=dict(metadata) if isinstance(metadata, Mapping) else None,
        applied_exclusions=applied,
    )


class DetectionServiceClient:
    """Decides between remote and local detection and talks to the remote service."""

    def __init__(
        self,
        config: DetectionConfig,
        *,
        audit: AuditLogger | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.config = config
        self.audit = audit or AuditLogger()
        self.transport = transport
        self._use_remote: bool | None = None

    def use_remote_detection(self) -> bool:
        if self._use_remote is not None:
            return self._use_remote

        enabled = self.config.remote_enabled
        managed = self.config.managed_tier
        not_dedicated = not self.config.dedicated_instance
        self._use_remote = enabled and managed and not_dedicated
        if not self._use_remote:
            logger.info(
                SDS_DISABLED_MESSAGE,
                enabled,
                managed,
                not_dedicated,
                extra={
                    "event": "sds_disabled",
                    "remote_enabled": enabled,
                    "managed_tier": managed,
                    "not_dedicated": not_dedicated,
                },
            )
        return self._use_remote

    def send(
        self,
        payloads: list[ScanPayload],
        exclusions: Iterable[Exclusion] | Mapping[Any, Iterable[Exclusion]] = (),
    ) -> ScanResponse | None:
        """POST the payloads to the service; None means no verdict."""
        if not self.config.service_url:
            logger.error(
                "Secret detection service URL is not configured",
                extra={"event": "sds_unconfigured"},
            )
            return None

        request = build_scan_request(payloads, exclusions)
        headers = {"Accept": "application/json"}
        if self.config.auth_token:
            headers["Authorization"] = f"Bearer {self.config.auth_token}"

        try:
            with httpx.Client(
                base_url=self.config.service_url,
                timeout=self.config.timeout_seconds,
                transport=self.transport,
            ) as client:
                response = client.post(SCAN_ENDPOINT, json=request, headers=headers)
                response.raise_for_status()
                body = response.json()
        except httpx.TimeoutException as exc:
            logger.error(
                "Secret detection service request timed out: %s",
                exc,
                extra={"event": "sds_timeout", "timeout": self.config.timeout_seconds},
            )
            return ScanResponse(status=ScanStatus.SCAN_TIMEOUT)
        except (httpx.HTTPError, ValueError) as exc:
            self.audit.track_exception(exc, service_url=self.config.service_url)
            return None

        if not isinstance(body, Mapping):
            self.audit.track_exception(
                ValueError(f"Unexpected response body type: {type(body).__name__}"),
                service_url=self.config.service_url,
            )
            return None
        try:
            return parse_scan_response(body)
        except (AttributeError, TypeError, ValueError) as exc:
            self.audit.track_exception(exc, service_url=self.config.service_url)
            return None


class LocalDetectionEngine:
    """In-process detection backed by detect-secrets."""

    def __init__(self, settings: Mapping[str, Any] | None = None) -> None:
        self.settings = dict(settings or LOCAL_SCANNER_CONFIG)

    def scan(
        self,
        payloads: list[ScanPayload],
        exclusions: Iterable[Exclusion] | Mapping[Any, Iterable[Exclusion]] = (),
        timeout: float | None = None,
    ) -> ScanResponse:
        if not payloads:
            return ScanResponse(status=ScanStatus.INPUT_ERROR)

        if isinstance(exclusions, Mapping):
            exclusion_list = [item for group in exclusions.values() for item in group]
        else:
            exclusion_list = list(exclusions)
        rule_values = {
            item.value for item in exclusion_list if item.type is ExclusionType.RULE
        }
        raw_values = {
            item.value for item in exclusion_list if item.type is ExclusionType.RAW_VALUE
        }

        deadline = time.monotonic() + timeout if timeout is not None else None
        findings: list[Finding] = []
        applied: dict[tuple[ExclusionType, str], Exclusion] = {}
        has_errors = False

        with transient_settings(self.settings):
            for payload in payloads:
                if deadline is not None and time.monotonic() > deadline:
                    logger.error(
                        "Local secret detection scan exceeded %.1fs",
                        timeout,
                        extra={"event": "local_scan_timeout"},
                    )
                    return ScanResponse(
                        status=ScanStatus.SCAN_TIMEOUT,
                        metadata={"message": "DEADLINE_EXCEEDED"},
                    )
                try:
                    payload_findings = self._scan_payload(
                        payload, rule_values, raw_values, applied
                    )
                except Exception as exc:  # noqa: BLE001
                    logger.error(
                        "Failed to scan payload %s: %s",
                        payload.id,
                        exc,
                        extra={"event": "payload_scan_error", "blob_id": payload.id},
                    )
                    has_errors = True
                    findings.append(
                        Finding(blob_reference=payload.id, status=ScanStatus.SCAN_ERROR)
                    )
                    continue
                findings.extend(payload_findings)

        found = any(finding.status is ScanStatus.FOUND for finding in findings)
        if found and has_errors:
            status = ScanStatus.FOUND_WITH_ERRORS
        elif found:
            status = ScanStatus.FOUND
        elif has_errors:
            status = ScanStatus.SCAN_ERROR
        else:
            status = ScanStatus.NOT_FOUND

        return ScanResponse(
            status=status,
            results=findings if status is not ScanStatus.NOT_FOUND else [],
            applied_exclusions=list(applied.values()),
        )

    def _scan_payload(
        self,
        payload: ScanPayload,
        rule_values: set[str],
        raw_values: set[str],
        applied: dict[tuple[ExclusionType, str], Exclusion],
    ) -> list[Finding]:
        findings: list[Finding] = []
        for index, line in enumerate(payload.data.split("\n")):
            for secret in scan_line(line):
                secret_type = secret.type
                if secret_type in rule_values:
                    applied[(ExclusionType.RULE, secret_type)] = Exclusion(
                        ExclusionType.RULE, secret_type
                    )
                    continue
                secret_value = secret.secret_value or ""
                if secret_value and secret_value in raw_values:
                    applied[(ExclusionType.RAW_VALUE, secret_value)] = Exclusion(
                        ExclusionType.RAW_VALUE, secret_value
                    )
                    continue
                findings.append(
                    Finding(
                        blob_reference=payload.id,
                        status=ScanStatus.FOUND,
                        line_number=payload.offset + index,
                        detector_id=secret_type,
                        description=secret_type,
                    )
                )
        return findings
