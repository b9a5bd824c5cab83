"""Econet (Banco Ecofuturo) web portal driven through Playwright.

The portal has no API: QR generation and payment checks are done by filling its
forms in a headless Chromium. One browser, one context, one page are reused for
the whole process; the browser-session queue guarantees a single caller at a time.

Login may stop at a one-time code prompt (``#txtClaveTrans``). The adapter then
consumes the code from the ``TwoFactorStore`` or, when none is stored, returns
``TwoFactorRequired`` so the caller can ask a human for it.
"""
from __future__ import annotations

import asyncio
import base64
from pathlib import Path
from typing import Optional

from playwright.async_api import (
    Browser,
    BrowserContext,
    Locator,
    Page,
    Playwright,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

from app import config
from app.config import FIAT_SETTINGS
from app.integrations.base import BrowserAutomation
from app.models.results import Ok, SessionResult, TwoFactorRequired
from app.services.two_factor import TwoFactorStore
from app.utils import get_logger

logger = get_logger(__name__)

SELECTORS = {
    "login_logo": "#LogoInicialEconet",
    "user_input": "#usuario",
    "password_input": "#password",
    "login_button": "#btn_ingresar",
    "two_fa_input": "#txtClaveTrans",
    "continue_button": 'button:has-text("Continuar")',
    "modal": "#modalMensaje",
    "modal_accept": 'button:has-text("Aceptar")',
    "qr_origin": "#Cuenta_Origen",
    "qr_destiny": "#Cuenta_Destino",
    "qr_details": "#glosa",
    "qr_amount": "#monto",
    "qr_unique_checkbox": "#pagoUnico",
    "qr_generate_button": "#GenerarQR",
    "qr_download_button": 'a[download="QR.png"]:has-text("Descargar QR")',
    "last_movement_button": '[data-id="mov-1"]',
    "receipt_modal": "#cotenidoComprobante",
    "glosa_row": 'tr:has-text("Glosa")',
}


class EconetPortal(BrowserAutomation):
    def __init__(self, two_factor: TwoFactorStore) -> None:
        self._two_factor = two_factor
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._page: Optional[Page] = None
        self._launch_lock = asyncio.Lock()

    # ----------------------------- lifecycle ----------------------------- #
    async def _ensure_browser(self) -> None:
        async with self._launch_lock:
            if self._browser is not None and self._context is not None:
                return
            logger.info("Launching headless browser instance")
            self._playwright = await async_playwright().start()
            executable = FIAT_SETTINGS.get("chrome_executable_path") or None
            self._browser = await self._playwright.chromium.launch(
                headless=bool(FIAT_SETTINGS.get("headless", True)),
                executable_path=executable,
                chromium_sandbox=False if executable else None,
            )
            self._context = await self._browser.new_context()

    async def _ensure_page(self) -> Page:
        if self._page is not None and not self._page.is_closed():
            return self._page
        await self._ensure_browser()
        self._page = await self._context.new_page()
        self._page.set_default_timeout(int(FIAT_SETTINGS["default_timeout_ms"]))
        return self._page

    async def close(self) -> None:
        if self._browser is not None:
            await self._browser.close()
            logger.info("Browser closed")
        if self._playwright is not None:
            await self._playwright.stop()
        self._page = None
        self._context = None
        self._browser = None
        self._playwright = None

    # ----------------------------- helpers ----------------------------- #
    async def _navigate(self, page: Page, url: str) -> None:
        await page.goto(url, wait_until="networkidle")

    async def _is_visible(self, locator: Locator, timeout_ms: int = 1500) -> bool:
        try:
            await locator.wait_for(state="visible", timeout=timeout_ms)
            return True
        except PlaywrightTimeoutError:
            return False

    async def _assert_visible(self, locator: Locator, name: str) -> None:
        try:
            await locator.wait_for(state="visible", timeout=int(FIAT_SETTINGS["element_timeout_ms"]))
        except PlaywrightTimeoutError as e:
            raise RuntimeError(f"{name} element is not visible. {e}") from e

    @staticmethod
    def _credential(name: str) -> str:
        value = getattr(config, name, None)
        if not value:
            raise RuntimeError(f"{name} is not configured")
        return value

    # ----------------------------- session ----------------------------- #
    async def ensure_session(self) -> SessionResult:
        page = await self._ensure_page()
        await self._navigate(page, str(FIAT_SETTINGS["index_page"]))
        if not await self._is_visible(page.locator(SELECTORS["login_logo"])):
            return Ok(None)

        logger.info("Executing portal login flow")
        await page.fill(SELECTORS["user_input"], self._credential("ECONET_USER"))
        await page.fill(SELECTORS["password_input"], self._credential("ECONET_PASS"))
        await page.click(SELECTORS["login_button"])
        await page.wait_for_load_state("networkidle")

        if await self._is_visible(page.locator(SELECTORS["two_fa_input"]), 2000):
            code = self._two_factor.consume_code()
            if code is None:
                logger.info("Portal asked for a 2FA code and none is stored")
                return TwoFactorRequired()
            await page.fill(SELECTORS["two_fa_input"], code)
            await page.locator(SELECTORS["continue_button"]).click()
            await page.wait_for_load_state("networkidle")
            logger.info("2FA code submitted")

        if await self._is_visible(page.locator(SELECTORS["modal"]), 1000):
            await page.locator(SELECTORS["modal_accept"]).click()
            await page.wait_for_load_state("networkidle")
        return Ok(None)

    # ----------------------------- operations ----------------------------- #
    async def generate_receipt(self, amount: float, memo: str) -> str:
        page = await self._ensure_page()
        await self._navigate(page, str(FIAT_SETTINGS["generate_qr_page"]))
        await self._assert_visible(page.locator(SELECTORS["qr_origin"]), "Cuenta_Origen")
        await self._assert_visible(page.locator(SELECTORS["qr_destiny"]), "Cuenta_Destino")

        await page.fill(SELECTORS["qr_details"], memo)
        await page.fill(SELECTORS["qr_amount"], f"{amount:.2f}")
        await page.locator(SELECTORS["qr_unique_checkbox"]).check(force=True)
        await page.click(SELECTORS["qr_generate_button"])
        await page.wait_for_timeout(int(FIAT_SETTINGS["qr_render_wait_ms"]))

        async with page.expect_download() as download_info:
            await page.locator(SELECTORS["qr_download_button"]).click()
        download = await download_info.value
        path = await download.path()
        if path is None:
            raise RuntimeError("Unable to read QR download")
        content = await asyncio.to_thread(Path(path).read_bytes)
        return base64.b64encode(content).decode("ascii")

    async def read_latest_transaction_memo(self) -> str:
        page = await self._ensure_page()
        await self._navigate(page, str(FIAT_SETTINGS["index_page"]))
        timeout = int(FIAT_SETTINGS["element_timeout_ms"])

        movement = page.locator(SELECTORS["last_movement_button"])
        await movement.wait_for(state="visible", timeout=timeout)
        await movement.click()

        receipt = page.locator(SELECTORS["receipt_modal"])
        await receipt.wait_for(state="visible", timeout=timeout)
        glosa_row = receipt.locator(SELECTORS["glosa_row"])
        await glosa_row.wait_for(state="visible", timeout=timeout)
        return (await glosa_row.locator("td").last.inner_text()).strip()


__all__ = ["EconetPortal", "SELECTORS"]
