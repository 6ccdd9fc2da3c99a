"""Stable entity keys and content hashes.

Keys identify an entity's vector across runs and backends, so the same logical
identity must always normalize to the same string.
"""

import hashlib
import re

_WHITESPACE = re.compile(r"\s+")
_DISALLOWED = re.compile(r"[^a-z0-9_:.\-]")


class EntityKeyBuilder:
    """Builds composite vector ids and SHA-256 content hashes."""

    separator = ":"

    def build_key(self, model_name: str, entity_type: str, schema_name: str, name: str) -> str:
        """Build the composite key for an entity.

        Each component is trimmed, lower-cased, whitespace-collapsed and then
        stripped of characters outside ``[a-z0-9_:.-]``.

        Example:
            >>> EntityKeyBuilder().build_key("M", "table", "dbo", "Customer-01")
            'm:table:dbo:customer-01'

        Raises:
            ValueError: If any component is blank or normalizes to nothing
        """
        parts = {
            "model_name": model_name,
            "entity_type": entity_type,
            "schema_name": schema_name,
            "name": name,
        }
        normalized = [self._normalize(label, value) for label, value in parts.items()]
        return self.separator.join(normalized)

    @staticmethod
    def _normalize(label: str, value: str) -> str:
        if value is None or not str(value).strip():
            raise ValueError(f"{label} must not be blank")
        collapsed = _WHITESPACE.sub(" ", str(value).strip().lower())
        cleaned = _DISALLOWED.sub("", collapsed)
        if not cleaned:
            raise ValueError(f"{label} {value!r} has no usable key characters")
        return cleaned

    @staticmethod
    def build_content_hash(text: str) -> str:
        """Return the lowercase hex SHA-256 digest of ``text`` (UTF-8).

        Raises:
            ValueError: If text is blank
        """
        if text is None or not text.strip():
            raise ValueError("Content text must not be blank")
        return hashlib.sha256(text.encode("utf-8")).hexdigest()


def build_key(model_name: str, entity_type: str, schema_name: str, name: str) -> str:
    return EntityKeyBuilder().build_key(model_name, entity_type, schema_name, name)


def build_content_hash(text: str) -> str:
    return EntityKeyBuilder.build_content_hash(text)
