"""Decide whether S3 traffic for a host should go through the configured proxy."""

from __future__ import annotations

import re
from typing import Iterable
from urllib.parse import quote, urlsplit

import structlog
from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_serializer, field_validator

log = structlog.get_logger(__name__)


class ProxyRule(BaseModel):
    """Outbound HTTP(S) proxy settings and the hosts exempt from them.

    ``no_proxy_patterns`` are regular expressions that must match the whole
    hostname. They are tested in order and the first match wins.
    """

    model_config = ConfigDict(frozen=True)

    host: str = Field(min_length=1)
    port: int = Field(gt=0, le=65535)
    username: str | None = None
    password: SecretStr | None = None
    no_proxy_patterns: tuple[str, ...] = ()

    @field_validator("no_proxy_patterns", mode="after")
    @classmethod
    def _check_patterns(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        for pattern in value:
            try:
                re.compile(pattern)
            except re.error as exc:
                raise ValueError(f"Invalid no-proxy pattern {pattern!r}: {exc}") from exc
        return value

    @field_serializer("password", when_used="json")
    def _reveal_password(self, value: SecretStr | None) -> str | None:
        # The JSON form travels to agents which need the real credential.
        return value.get_secret_value() if value is not None else None

    @classmethod
    def from_no_proxy_hosts(
        cls,
        host: str,
        port: int,
        no_proxy_hosts: str | Iterable[str] = (),
        *,
        username: str | None = None,
        password: str | None = None,
    ) -> "ProxyRule":
        """Build a rule from glob style host lists such as ``*.internal``."""

        if isinstance(no_proxy_hosts, str):
            entries = re.split(r"[\s,|]+", no_proxy_hosts)
        else:
            entries = list(no_proxy_hosts)
        patterns = tuple(
            re.escape(entry.strip()).replace(r"\*", ".*")
            for entry in entries
            if entry and entry.strip()
        )
        return cls(
            host=host,
            port=port,
            username=username,
            password=SecretStr(password) if password is not None else None,
            no_proxy_patterns=patterns,
        )

    def proxy_url(self) -> str:
        """Return the proxy URL, embedding credentials when configured."""

        credentials = ""
        if self.username:
            credentials = quote(self.username, safe="")
            if self.password is not None:
                credentials += ":" + quote(self.password.get_secret_value(), safe="")
            credentials += "@"
        return f"http://{credentials}{self.host}:{self.port}"

    def exempts(self, target_host: str) -> str | None:
        """Return the first no-proxy pattern matching *target_host*."""

        hostname = _hostname(target_host)
        for pattern in self.no_proxy_patterns:
            if re.fullmatch(pattern, hostname):
                return pattern
        return None


def _hostname(target: str) -> str:
    if "://" in target:
        return urlsplit(target).hostname or target
    return target


def should_proxy(proxy: ProxyRule | None, target_host: str) -> bool:
    """Return ``True`` when calls to *target_host* must use *proxy*."""

    if proxy is None:
        return False
    pattern = proxy.exempts(target_host)
    if pattern is not None:
        log.debug("s3.proxy.bypassed", host=target_host, pattern=pattern)
        return False
    return True


def proxies_for(proxy: ProxyRule | None, target_host: str) -> dict[str, str] | None:
    """Return the botocore ``proxies`` mapping for *target_host*, if any."""

    if proxy is None or not should_proxy(proxy, target_host):
        return None
    url = proxy.proxy_url()
    return {"http": url, "https": url}


__all__ = ["ProxyRule", "proxies_for", "should_proxy"]
