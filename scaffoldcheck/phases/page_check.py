"""Rendered-page assertion for the serve phase.

Once the dev server reports readiness, the page is polled over HTTP until it
answers, then a headless Playwright script (run through ``node -e``) reads the
text of a selector, which must equal the expected literal.  The script runs
through :class:`~scaffoldcheck.process.runner.ProcessRunner`, so the browser
processes below node are reclaimed with it.
"""

from __future__ import annotations

import asyncio
import json
import textwrap
from pathlib import Path
from typing import Optional

from scaffoldcheck.config import HarnessConfig
from scaffoldcheck.process.runner import ProcessRunner, ProcessSpawnError
from scaffoldcheck.utils import format_duration, tail, wait_for_health

# Time the script gets on top of its own page timeout to launch the browser.
SCRIPT_GRACE_SECONDS = 10.0


def _build_text_script(url: str, selector: str, timeout_ms: int) -> str:
    """Return a self-contained Playwright script printing the selector's text as JSON."""
    return textwrap.dedent(f"""\
        const {{ chromium }} = require('playwright');

        (async () => {{
            const browser = await chromium.launch({{ headless: true }});
            const page = await browser.newPage();
            try {{
                await page.goto({json.dumps(url)}, {{ waitUntil: 'load', timeout: {timeout_ms} }});
                await page.waitForSelector({json.dumps(selector)}, {{ timeout: {timeout_ms} }});
                const text = await page.textContent({json.dumps(selector)});
                console.log(JSON.stringify(text));
            }} catch (err) {{
                console.error('Page check failed:', err.message);
                process.exit(1);
            }} finally {{
                await browser.close();
            }}
        }})();
    """)


def _parse_text(stdout: str) -> Optional[str]:
    """Extract the JSON-encoded text printed on the last stdout line."""
    lines = [line for line in stdout.splitlines() if line.strip()]
    if not lines:
        return None
    try:
        value = json.loads(lines[-1])
    except json.JSONDecodeError:
        return lines[-1].strip()
    return value.strip() if isinstance(value, str) else None


class PageContentCheck:
    """Asserts that a served page renders the expected text.

    Instances are awaitable callables returning a failure reason, or ``None``
    when the page matched, which is the contract of
    :attr:`PhaseSpec.ready_check <scaffoldcheck.phases.models.PhaseSpec.ready_check>`.
    """

    def __init__(
        self,
        url: str,
        selector: str,
        expected_text: str,
        *,
        timeout: float = 30.0,
        cwd: str | Path | None = None,
        node_binary: str = "node",
        runner: Optional[ProcessRunner] = None,
    ) -> None:
        self.url = url
        self.selector = selector
        self.expected_text = expected_text
        self.timeout = timeout
        self.cwd = cwd
        self.node_binary = node_binary
        self.runner = runner or ProcessRunner()

    @classmethod
    def from_config(cls, config: HarnessConfig, project_dir: Path) -> "PageContentCheck":
        page = config.page_check
        return cls(
            config.serve_url,
            page.selector,
            page.expected_text,
            timeout=page.timeout,
            cwd=project_dir,
        )

    async def __call__(self) -> Optional[str]:
        if not await wait_for_health(self.url, timeout=self.timeout):
            return f"{self.url} did not respond within {self.timeout:.0f}s"

        script = _build_text_script(self.url, self.selector, int(self.timeout * 1000))
        try:
            handle = await self.runner.spawn(
                [self.node_binary, "-e", script], self.cwd or Path.cwd()
            )
        except ProcessSpawnError:
            return f"Page check needs '{self.node_binary}' on PATH"

        limit = self.timeout + SCRIPT_GRACE_SECONDS
        try:
            returncode = await asyncio.wait_for(handle.wait(), timeout=limit)
        except asyncio.TimeoutError:
            return f"Page check for {self.url} timed out after {format_duration(limit)}"
        finally:
            # Also on cancellation, so the browser never outlives the check.
            await handle.terminate()

        stdout, stderr = handle.stdout_text, handle.stderr_text
        if returncode != 0:
            return f"Page check failed for {self.url}: {tail(stderr or stdout, max_lines=3)}"

        actual = _parse_text(stdout)
        if actual != self.expected_text:
            return (
                f"Expected '{self.selector}' to read {self.expected_text!r}, "
                f"got {actual!r}"
            )
        return None
