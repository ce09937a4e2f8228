# policyclean/fastapi.py
from typing import Any, Iterable
from fastapi import Depends, Request
from multidict import MultiDict
from .core import Policy, clean


class SanitizedPayload:
    """
    FastAPI dependency that returns the request payload with every string
    cleaned by a sanitizer policy.

    Attributes:
        policy (Policy | None): Policy to clean with, engine defaults when None
        fields (frozenset[str] | None): Top-level keys to clean, all when None
    """

    def __init__(self, policy: Policy | None = None, fields: Iterable[str] | None = None):
        """
        Args:
            policy: Built sanitizer policy
            fields: Restrict cleaning to these top-level keys
        """
        self.policy = policy
        self.fields = frozenset(fields) if fields is not None else None

    async def __call__(self, request: Request) -> dict[str, Any]:
        """
        Read the request body and sanitize it.

        Args:
            request: FastAPI request object

        Returns:
            dict: Payload with sanitized string values
        """
        data = await get_request_data(request)
        return {
            key: sanitize_value(value, self.policy)
            if self.fields is None or key in self.fields else value
            for key, value in data.items()
        }


async def get_request_data(request: Request) -> dict:
    """
    Extract and normalize request data from different content types.

    Handles:
    - JSON payloads (application/json)
    - Form data (x-www-form-urlencoded)
    - Multipart form data (multipart/form-data)

    Repeated form keys are collected into a list.

    Args:
        request: FastAPI request object

    Returns:
        dict: Normalized request data
    """
    content_type = request.headers.get('content-type', '')

    if content_type.startswith('application/json'):
        data = await request.json()
        return data if isinstance(data, dict) else {}

    if content_type.startswith(('application/x-www-form-urlencoded', 'multipart/form-data')):
        form_data = await request.form()
        multi = MultiDict(form_data.multi_items())
        normalized = {}
        for key in dict.fromkeys(multi.keys()):
            values = multi.getall(key)
            normalized[key] = values if len(values) > 1 else values[0]
        return normalized

    return {}


def sanitize_value(value: Any, policy: Policy | None = None) -> Any:
    """Clean every string inside ``value``, leaving other scalars untouched."""
    if isinstance(value, str):
        return policy.clean(value) if policy is not None else clean(value)
    if isinstance(value, (list, tuple, set)):
        sanitized_iterable = [sanitize_value(v, policy) for v in value]
        if isinstance(value, tuple):
            return tuple(sanitized_iterable)
        elif isinstance(value, set):
            return set(sanitized_iterable)
        return sanitized_iterable
    if isinstance(value, dict):
        return {k: sanitize_value(v, policy) for k, v in value.items()}
    return value


def sanitized_payload(
    policy: Policy | None = None,
    fields: Iterable[str] | None = None,
) -> Depends:
    """
    Create FastAPI dependency for payload sanitization.

    Usage:
    @app.post("/comments")
    async def create_comment(payload: dict = sanitized_payload(Policy({"tags": ["b"]}))):
        ...

    Args:
        policy: Sanitizer policy, engine defaults when omitted
        fields: Top-level keys to clean

    Returns:
        FastAPI dependency
    """
    return Depends(SanitizedPayload(policy, fields))
