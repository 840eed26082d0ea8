"""Interactive Telegram authorization for the sync client.

Run once (``portal telegram-login``) to create the .session file that
``portal sync`` reuses. LOGIN_METHOD, PHONE and 2FA in the environment skip
the matching prompts.
"""

from __future__ import annotations

import asyncio
import logging
import os
from getpass import getpass
from typing import Awaitable, Callable

import qrcode
from telethon import TelegramClient, errors

from client import build_client
from core.errors import UpstreamFailure

LOGGER = logging.getLogger(__name__)

QR_TIMEOUT_SECONDS = 120
QR_ATTEMPTS = 3


def _show_qr(url: str) -> None:
    code = qrcode.QRCode(border=1)
    code.add_data(url)
    code.make(fit=True)
    code.print_ascii(invert=True)
    print("Scan with Telegram: Settings > Devices > Link Desktop Device")


def _two_factor_password() -> str:
    return os.getenv("2FA") or getpass("2FA password: ")


async def _login_by_qr(client: TelegramClient) -> None:
    login = await client.qr_login()
    for attempt in range(1, QR_ATTEMPTS + 1):
        _show_qr(login.url)
        try:
            await login.wait(timeout=QR_TIMEOUT_SECONDS)
            return
        except asyncio.TimeoutError:
            if attempt == QR_ATTEMPTS:
                raise UpstreamFailure("QR code was not scanned in time")
            LOGGER.info("QR code expired, generating a new one")
            await login.recreate()


async def _login_by_phone(client: TelegramClient) -> None:
    phone = os.getenv("PHONE") or input("Phone number (international format): ").strip()
    await client.send_code_request(phone)
    await client.sign_in(phone=phone, code=input("Login code: ").strip())


LOGIN_METHODS: dict[str, Callable[[TelegramClient], Awaitable[None]]] = {
    "qr": _login_by_qr,
    "phone": _login_by_phone,
}

_MENU = (("1", "qr", "QR code"), ("2", "phone", "Phone code"))


def _choose_method() -> str:
    configured = (os.getenv("LOGIN_METHOD") or "").strip().lower()
    if configured in LOGIN_METHODS:
        return configured

    choices = {key: method for key, method, _ in _MENU}
    while True:
        print("\nTelegram login methods:")
        for key, _, label in _MENU:
            print(f"[{key}] {label}")
        print("[q] Cancel")
        answer = input("portal > ").strip().lower()
        if answer == "q":
            raise SystemExit(0)
        if answer in choices:
            return choices[answer]
        print("Unknown option.")


async def authorize(client: TelegramClient) -> None:
    """Log the client in unless its session file is already authorized."""

    if await client.is_user_authorized():
        return

    method = _choose_method()
    try:
        try:
            await LOGIN_METHODS[method](client)
        except errors.SessionPasswordNeededError:
            await client.sign_in(password=_two_factor_password())
    except errors.RPCError as exc:
        raise UpstreamFailure(f"Telegram login failed: {exc}") from exc
    LOGGER.info("Telegram client authorized by %s", method)


async def login() -> None:
    client = build_client()
    await client.connect()
    try:
        await authorize(client)
        me = await client.get_me()
        print(f"Telegram session ready for {getattr(me, 'first_name', None) or 'unknown user'}")
    finally:
        await client.disconnect()
