# service/emailer.py
"""
SMTP delivery of a harvest session's CSV export.

Transport settings come from env (see SmtpTransport.from_env). Every failure
surfaces as EmailSendError; transient ones (connection drops, 4xx replies)
are retried with exponential backoff before giving up.
"""

from __future__ import annotations

import contextlib
import mimetypes
import os
import smtplib
import ssl
import time
import uuid
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.message import EmailMessage
from email.utils import formatdate, make_msgid
from typing import Any

SEND_ATTEMPTS = 3
CLEARTEXT_PORTS = (25, 2525)


class EmailSendError(RuntimeError):
    """Raised when an email cannot be delivered."""

    def __init__(self, message: str, *, transient: bool = False) -> None:
        super().__init__(message)
        self.transient = transient


# ---- Transport ---------------------------------------------------------------


def _env_first(*names: str, default: str = "") -> str:
    for n in names:
        v = os.getenv(n)
        if v:
            return v
    return default


def _env_flag(name: str) -> bool | None:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return None
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class SmtpTransport:
    host: str = ""
    port: int = 587
    username: str = ""
    password: str = field(default="", repr=False)
    use_ssl: bool = False
    starttls: str = "auto"  # "true" | "false" | "auto"
    from_addr: str = ""
    from_name: str = ""
    default_to: tuple[str, ...] = ()
    insecure_tls: bool = False

    @classmethod
    def from_env(cls) -> SmtpTransport:
        """
        SMTP_HOST, SMTP_PORT (587)
        SMTP_USERNAME | SMTP_USER, SMTP_PASSWORD | SMTP_PASS  (login only when both are set)
        SMTP_FROM | MAIL_FROM (falls back to the username), SMTP_FROM_NAME
        MAIL_TO              comma-separated default recipients
        SMTP_USE_SSL         implicit TLS; defaults to on for port 465
        SMTP_STARTTLS        true | false | auto
        SMTP_INSECURE_TLS    skip certificate verification
        """
        raw_port = _env_first("SMTP_PORT", default="587")
        try:
            port = int(raw_port)
        except ValueError as e:
            raise EmailSendError(f"SMTP_PORT must be an integer (got {raw_port!r}).") from e
        username = _env_first("SMTP_USERNAME", "SMTP_USER")
        use_ssl = _env_flag("SMTP_USE_SSL")
        return cls(
            host=_env_first("SMTP_HOST"),
            port=port,
            username=username,
            password=_env_first("SMTP_PASSWORD", "SMTP_PASS"),
            use_ssl=port == 465 if use_ssl is None else use_ssl,
            starttls=_env_first("SMTP_STARTTLS", default="auto").strip().lower(),
            from_addr=_env_first("SMTP_FROM", "MAIL_FROM", default=username),
            from_name=_env_first("SMTP_FROM_NAME"),
            default_to=tuple(_as_list(_env_first("MAIL_TO"))),
            insecure_tls=bool(_env_flag("SMTP_INSECURE_TLS")),
        )

    def wants_starttls(self) -> bool:
        if self.use_ssl:
            return False
        if self.starttls in ("true", "false"):
            return self.starttls == "true"
        return self.port not in CLEARTEXT_PORTS

    def tls_context(self) -> ssl.SSLContext:
        if self.insecure_tls:
            return ssl._create_unverified_context()
        return ssl.create_default_context()


# ---- Message -------------------------------------------------------------------


def _as_list(values: Iterable[str] | str | None) -> list[str]:
    if not values:
        return []
    if isinstance(values, str):
        values = values.split(",")
    return [v.strip() for v in values if v and v.strip()]


def _summary_text(meta: dict[str, Any]) -> str:
    lines = ["LinkedIn session completed."]
    if meta.get("keywords"):
        lines.append(f"Keywords: {meta['keywords']}")
    if meta.get("location"):
        lines.append(f"Location: {meta['location']}")
    if meta.get("count") is not None:
        lines.append(f"Jobs: {meta['count']}")
    return "\n".join(lines)


def build_message(
    transport: SmtpTransport,
    *,
    subject: str,
    text: str,
    to: list[str],
    html: str | None = None,
    attachment_path: str | None = None,
) -> EmailMessage:
    if not subject.strip():
        raise EmailSendError("Missing subject.")
    if not to:
        raise EmailSendError("No recipients.")
    if not transport.from_addr:
        raise EmailSendError("No from address. Set SMTP_FROM or MAIL_FROM (or SMTP_USERNAME).")

    msg = EmailMessage()
    msg["From"] = f"{transport.from_name} <{transport.from_addr}>" if transport.from_name else transport.from_addr
    msg["To"] = ", ".join(to)
    msg["Subject"] = subject
    msg["Date"] = formatdate(localtime=True)
    msg["Message-ID"] = make_msgid()
    msg["X-Harvest-Nonce"] = uuid.uuid4().hex

    msg.set_content(text or "See attachment.")
    if html and html.strip():
        msg.add_alternative(html, subtype="html", charset="utf-8")

    if attachment_path:
        try:
            with open(attachment_path, "rb") as f:
                payload = f.read()
        except OSError as e:
            raise EmailSendError(f"Cannot read attachment {attachment_path!r}: {e}") from e
        ctype = mimetypes.guess_type(attachment_path)[0] or "application/octet-stream"
        maintype, subtype = ctype.split("/", 1)
        msg.add_attachment(payload, maintype=maintype, subtype=subtype, filename=os.path.basename(attachment_path))

    return msg


# ---- SMTP ----------------------------------------------------------------------


@contextlib.contextmanager
def _connect(transport: SmtpTransport) -> Iterator[smtplib.SMTP]:
    """Open, secure and (when credentials exist) authenticate a session."""
    if not transport.host:
        raise EmailSendError("Missing SMTP host. Expected SMTP_HOST.")
    context = transport.tls_context()
    if transport.use_ssl:
        server: smtplib.SMTP = smtplib.SMTP_SSL(transport.host, transport.port, context=context)
    else:
        server = smtplib.SMTP(transport.host, transport.port)
    with server:
        server.ehlo()
        if transport.wants_starttls():
            server.starttls(context=context)
            server.ehlo()
        if transport.username and transport.password:
            server.login(transport.username, transport.password)
        yield server


def _is_transient(exc: Exception) -> bool:
    if isinstance(exc, (smtplib.SMTPServerDisconnected, smtplib.SMTPConnectError, ConnectionError, TimeoutError)):
        return True
    code = getattr(exc, "smtp_code", None)
    return isinstance(code, int) and 400 <= code < 500


def _send_via_smtp(msg: EmailMessage, *, rcpt_to: list[str], transport: SmtpTransport) -> None:
    try:
        with _connect(transport) as server:
            server.send_message(msg, to_addrs=rcpt_to)
    except EmailSendError:
        raise
    except (smtplib.SMTPException, OSError) as e:
        raise EmailSendError(f"SMTP send failed: {e}", transient=_is_transient(e)) from e


# ---- Public API ----------------------------------------------------------------


def send_results(
    transport: SmtpTransport | None,
    path: str,
    meta: dict[str, Any] | None = None,
    *,
    to: list[str] | str | None = None,
) -> str:
    """
    Mail a session's export file.

    Args:
        transport: SMTP settings (None = SmtpTransport.from_env())
        path: file to attach
        meta: session metadata; uses 'keywords', 'location', 'count' and the
              optional 'html', 'subject' and 'to'

    Recipients: ``to``, else meta['to'], else the transport's MAIL_TO list.

    Returns:
        the Message-ID header

    Raises:
        EmailSendError when the message cannot be built or delivered.
    """
    transport = transport or SmtpTransport.from_env()
    meta = dict(meta or {})
    recipients = _as_list(to) or _as_list(meta.get("to")) or list(transport.default_to)

    msg = build_message(
        transport,
        subject=meta.get("subject") or f"LinkedIn scrape — {datetime.now(timezone.utc).isoformat()}",
        text=_summary_text(meta),
        to=recipients,
        html=meta.get("html"),
        attachment_path=path,
    )

    for attempt in range(SEND_ATTEMPTS):
        try:
            _send_via_smtp(msg, rcpt_to=recipients, transport=transport)
            return str(msg["Message-ID"])
        except EmailSendError as e:
            if not e.transient or attempt == SEND_ATTEMPTS - 1:
                raise
            time.sleep(2 ** (attempt + 1))
    raise EmailSendError("Send failed after retries")  # pragma: no cover

