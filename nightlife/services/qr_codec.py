from __future__ import annotations

import base64
import binascii
import io
import json
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

import qrcode
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

IV_LENGTH = 16
KEY_LENGTH = 32


class QRType:
    TICKET = "ticket"
    MENU = "menu"
    MENU_FROM_TICKET = "menu_from_ticket"

    ALL = frozenset({TICKET, MENU, MENU_FROM_TICKET})


class InvalidQRCode(ValueError):
    """Raised for any token that cannot be decoded. The cause is never exposed."""

    def __init__(self) -> None:
        super().__init__("Invalid QR code")


@dataclass(frozen=True)
class QRPayload:
    type: str
    club_id: Optional[str] = None
    id: Optional[str] = None
    ticket_purchase_id: Optional[str] = None

    def to_wire(self) -> Dict[str, Any]:
        """Compact form embedded in the token: short keys keep the QR image small."""
        wire: Dict[str, Any] = {"t": self.type}
        if self.id:
            wire["i"] = self.id
        if self.club_id:
            wire["c"] = self.club_id
        if self.ticket_purchase_id:
            wire["tp"] = self.ticket_purchase_id
        return wire

    @classmethod
    def from_wire(cls, wire: Dict[str, Any]) -> "QRPayload":
        qr_type = wire.get("t")
        if qr_type not in QRType.ALL:
            raise InvalidQRCode()
        return cls(
            type=qr_type,
            club_id=wire.get("c"),
            id=wire.get("i"),
            ticket_purchase_id=wire.get("tp"),
        )

    def as_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"type": self.type, "clubId": self.club_id}
        if self.id:
            data["id"] = self.id
        if self.ticket_purchase_id:
            data["ticketPurchaseId"] = self.ticket_purchase_id
        return data


class QRCodec:
    """AES-256-CBC codec for QR tokens: base64(IV || ciphertext)."""

    def __init__(self, key: str | bytes) -> None:
        raw = key.encode("utf-8") if isinstance(key, str) else key
        if len(raw) != KEY_LENGTH:
            raise ValueError("QR_ENCRYPTION_KEY must be exactly 32 characters")
        self._key = raw

    def encrypt(self, payload: QRPayload) -> str:
        iv = os.urandom(IV_LENGTH)
        plaintext = json.dumps(payload.to_wire(), separators=(",", ":")).encode("utf-8")

        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(plaintext) + padder.finalize()

        encryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()
        return base64.b64encode(iv + ciphertext).decode("ascii")

    def decrypt(self, token: str) -> QRPayload:
        try:
            data = base64.b64decode(token, validate=True)
            iv, ciphertext = data[:IV_LENGTH], data[IV_LENGTH:]
            if len(iv) != IV_LENGTH or not ciphertext or len(ciphertext) % IV_LENGTH:
                raise InvalidQRCode()

            decryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).decryptor()
            padded = decryptor.update(ciphertext) + decryptor.finalize()
            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            plaintext = unpadder.update(padded) + unpadder.finalize()

            wire = json.loads(plaintext.decode("utf-8"))
            if not isinstance(wire, dict):
                raise InvalidQRCode()
            return QRPayload.from_wire(wire)
        except InvalidQRCode:
            raise
        except (binascii.Error, ValueError, TypeError, UnicodeDecodeError) as exc:
            raise InvalidQRCode() from exc

    @staticmethod
    def render_png(token: str) -> bytes:
        """Return QR PNG bytes for the provided token."""
        img = qrcode.make(token)
        buf = io.BytesIO()
        img.save(buf, format="PNG")
        return buf.getvalue()
