"""
Data model: decoded Alertmanager webhook messages, recipient addresses and
signald send requests.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

from signald_webhook.errors import DecodeError

TEL_PREFIX = "tel:"
GROUP_PREFIX = "group:"


# =====================================================================
# ALERTMANAGER WEBHOOK PAYLOAD
# =====================================================================

def _string_map(payload: dict, key: str) -> Dict[str, str]:
    value = payload.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise DecodeError(f"{key!r} must be an object")
    for k, v in value.items():
        if not isinstance(v, str):
            raise DecodeError(f"{key}[{k!r}] must be a string")
    return dict(value)


def _string_field(payload: dict, key: str) -> str:
    value = payload.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise DecodeError(f"{key!r} must be a string")
    return value


@dataclass(frozen=True)
class Alert:
    status: str = ""
    labels: Dict[str, str] = field(default_factory=dict)
    annotations: Dict[str, str] = field(default_factory=dict)
    startsAt: str = ""
    endsAt: str = ""
    generatorURL: str = ""
    fingerprint: str = ""

    @classmethod
    def from_dict(cls, payload) -> "Alert":
        if not isinstance(payload, dict):
            raise DecodeError("alerts must contain objects")
        return cls(
            status=_string_field(payload, "status"),
            labels=_string_map(payload, "labels"),
            annotations=_string_map(payload, "annotations"),
            startsAt=_string_field(payload, "startsAt"),
            endsAt=_string_field(payload, "endsAt"),
            generatorURL=_string_field(payload, "generatorURL"),
            fingerprint=_string_field(payload, "fingerprint"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "labels": dict(self.labels),
            "annotations": dict(self.annotations),
            "startsAt": self.startsAt,
            "endsAt": self.endsAt,
            "generatorURL": self.generatorURL,
            "fingerprint": self.fingerprint,
        }


@dataclass(frozen=True)
class AlertMessage:
    """One Alertmanager webhook notification (payload version 4)."""

    receiver: str
    status: str = ""
    alerts: Tuple[Alert, ...] = ()
    groupLabels: Dict[str, str] = field(default_factory=dict)
    commonLabels: Dict[str, str] = field(default_factory=dict)
    commonAnnotations: Dict[str, str] = field(default_factory=dict)
    externalURL: str = ""
    groupKey: str = ""
    version: str = ""
    truncatedAlerts: int = 0

    @classmethod
    def from_dict(cls, payload) -> "AlertMessage":
        """
        Decode a parsed JSON body.

        Raises:
            DecodeError: body is not an object, `receiver` is not a string,
                label maps are not string-to-string, `alerts` is
                not a list of objects
        """
        if not isinstance(payload, dict):
            raise DecodeError("payload must be a JSON object")

        receiver = payload.get("receiver")
        if receiver is None:
            # No receiver has an empty name; dispatch raises UnknownReceiver
            receiver = ""
        if not isinstance(receiver, str):
            raise DecodeError("'receiver' must be a string")

        raw_alerts = payload.get("alerts")
        if raw_alerts is None:
            raw_alerts = []
        if not isinstance(raw_alerts, list):
            raise DecodeError("'alerts' must be a list")

        truncated = payload.get("truncatedAlerts", 0)
        if not isinstance(truncated, int) or isinstance(truncated, bool):
            raise DecodeError("'truncatedAlerts' must be an integer")

        return cls(
            receiver=receiver,
            status=_string_field(payload, "status"),
            alerts=tuple(Alert.from_dict(a) for a in raw_alerts),
            groupLabels=_string_map(payload, "groupLabels"),
            commonLabels=_string_map(payload, "commonLabels"),
            commonAnnotations=_string_map(payload, "commonAnnotations"),
            externalURL=_string_field(payload, "externalURL"),
            groupKey=_string_field(payload, "groupKey"),
            version=_string_field(payload, "version"),
            truncatedAlerts=truncated,
        )

    @property
    def firing(self) -> List[Alert]:
        return [a for a in self.alerts if a.status == "firing"]

    @property
    def resolved(self) -> List[Alert]:
        return [a for a in self.alerts if a.status == "resolved"]

    def template_data(self) -> Dict[str, Any]:
        """Variables visible to receiver templates."""
        alerts = [a.to_dict() for a in self.alerts]
        return {
            "receiver": self.receiver,
            "status": self.status,
            "alerts": alerts,
            "firing": [a for a in alerts if a["status"] == "firing"],
            "resolved": [a for a in alerts if a["status"] == "resolved"],
            "groupLabels": dict(self.groupLabels),
            "commonLabels": dict(self.commonLabels),
            "commonAnnotations": dict(self.commonAnnotations),
            "externalURL": self.externalURL,
            "groupKey": self.groupKey,
            "version": self.version,
            "truncatedAlerts": self.truncatedAlerts,
        }


# =====================================================================
# RECIPIENTS
# =====================================================================

@dataclass(frozen=True)
class PhoneAddress:
    number: str

    def __str__(self):
        return f"{TEL_PREFIX}{self.number}"


@dataclass(frozen=True)
class GroupAddress:
    group_id: str

    def __str__(self):
        return f"{GROUP_PREFIX}{self.group_id}"


RecipientAddress = Union[PhoneAddress, GroupAddress]


def parse_recipient(rendered: str) -> Optional[RecipientAddress]:
    """Classify a rendered recipient string; None for an unknown prefix."""
    if rendered.startswith(TEL_PREFIX):
        return PhoneAddress(rendered[len(TEL_PREFIX):])
    if rendered.startswith(GROUP_PREFIX):
        return GroupAddress(rendered[len(GROUP_PREFIX):])
    return None


@dataclass(frozen=True)
class SendRequest:
    username: str
    message_body: str
    recipient: RecipientAddress

    def to_payload(self) -> Dict[str, Any]:
        """signald v1 `send` request body, without the request id."""
        payload: Dict[str, Any] = {
            "type": "send",
            "version": "v1",
            "username": self.username,
            "messageBody": self.message_body,
        }
        if isinstance(self.recipient, PhoneAddress):
            payload["recipientAddress"] = {"number": self.recipient.number}
        else:
            payload["recipientGroupId"] = self.recipient.group_id
        return payload
