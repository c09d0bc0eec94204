#
# Copyright Elasticsearch B.V. and/or licensed to Elasticsearch B.V. under one
# or more contributor license agreements. Licensed under the Elastic License 2.0;
# you may not use this file except in compliance with the Elastic License 2.0.
#
"""
Long-lived PowerShell process used to reach the SharePoint Online Management
Shell and the Security & Compliance center.

Connections made by `Connect-SPOService` and `Connect-IPPSSession` live inside
the PowerShell runspace, so a single `PowerShellHost` serves a whole run.
Every script is sent as one base64 encoded line and answers with one JSON
envelope followed by a sentinel line.
"""
import asyncio
import base64
import json
import shutil
from uuid import uuid4

from dag_insights.exceptions import DependencyError, PowerShellError
from dag_insights.logger import logger, tracer

EXECUTABLE_CANDIDATES = ("pwsh", "powershell")
JSON_DEPTH = 6
READ_LIMIT = 2**24
CLOSE_TIMEOUT = 10

BOOTSTRAP = (
    "[Console]::OutputEncoding = [System.Text.Encoding]::UTF8; "
    "$ErrorActionPreference = 'Stop'; "
    "$ProgressPreference = 'SilentlyContinue'"
)

ENVELOPE = """
$__dagReply = try {{
    $__dagData = & {{
{script}
    }}
    @{{ ok = $true; data = $__dagData }}
}} catch {{
    @{{ ok = $false; error = $_.Exception.Message }}
}}
[Console]::Out.WriteLine(($__dagReply | ConvertTo-Json -Depth {depth} -Compress))
[Console]::Out.WriteLine('{sentinel}')
"""


def find_executable(candidates=EXECUTABLE_CANDIDATES):
    for candidate in candidates:
        path = shutil.which(candidate)
        if path:
            return path
    return None


def quote(value):
    """Single-quoted PowerShell literal, embedded quotes doubled."""
    return "'" + str(value).replace("'", "''") + "'"


def format_parameters(params):
    """Renders `{"Name": value}` as PowerShell parameters.

    Booleans become `-Name:$true` / `-Name:$false`, integers stay bare,
    `None` values are dropped and everything else is quoted.
    """
    rendered = []
    for name, value in params.items():
        if value is None:
            continue
        if isinstance(value, bool):
            rendered.append(f"-{name}:${str(value).lower()}")
        elif isinstance(value, int):
            rendered.append(f"-{name} {value}")
        else:
            rendered.append(f"-{name} {quote(value)}")
    return " ".join(rendered)


def as_list(data):
    """ConvertTo-Json unwraps one-element arrays; this wraps them back."""
    if data is None:
        return []
    if isinstance(data, list):
        return data
    return [data]


class PowerShellHost:
    def __init__(self, executable=None):
        self.executable = executable
        self._process = None

    @property
    def running(self):
        return self._process is not None and self._process.returncode is None

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_value, traceback):
        await self.close()

    async def start(self):
        if self.running:
            return

        if self.executable is None:
            self.executable = find_executable()
        if self.executable is None:
            msg = f"PowerShell was not found in PATH (looked for {', '.join(EXECUTABLE_CANDIDATES)})"
            raise DependencyError(msg)

        logger.debug(f"Starting PowerShell host {self.executable}")
        try:
            self._process = await asyncio.create_subprocess_exec(
                self.executable,
                "-NoLogo",
                "-NoProfile",
                "-Command",
                "-",
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                limit=READ_LIMIT,
            )
        except OSError as e:
            msg = f"Unable to start PowerShell host {self.executable}: {e}"
            raise DependencyError(msg) from e

        await self._write_line(BOOTSTRAP)

    async def close(self):
        if not self.running:
            self._process = None
            return

        logger.debug("Stopping PowerShell host")
        try:
            await self._write_line("exit")
            await asyncio.wait_for(self._process.wait(), timeout=CLOSE_TIMEOUT)
        except (asyncio.TimeoutError, ConnectionError, PowerShellError):
            logger.warning("PowerShell host did not exit in time, killing it")
            self._process.kill()
            await self._process.wait()
        finally:
            self._process = None

    @tracer.start_as_current_span("PowerShell", slow_log=5)
    async def invoke(self, script):
        """Runs `script` and returns whatever it wrote to the output stream,
        decoded from JSON.

        Raises `PowerShellError` with the exception message when the script
        throws.
        """
        if not self.running:
            await self.start()

        sentinel = f"__DAG_INSIGHTS_END_{uuid4().hex}__"
        wrapped = ENVELOPE.format(script=script, depth=JSON_DEPTH, sentinel=sentinel)
        encoded = base64.b64encode(wrapped.encode("utf-8")).decode("ascii")
        await self._write_line(
            "Invoke-Expression ([System.Text.Encoding]::UTF8.GetString("
            f"[System.Convert]::FromBase64String('{encoded}')))"
        )

        lines = await self._read_until(sentinel)
        return self._parse_reply(lines)

    async def _write_line(self, line):
        if self._process is None or self._process.stdin is None:
            msg = "PowerShell host is not running"
            raise PowerShellError(msg)
        self._process.stdin.write(line.encode("utf-8") + b"\n")
        await self._process.stdin.drain()

    async def _read_until(self, sentinel):
        lines = []
        while True:
            raw = await self._process.stdout.readline()
            if not raw:
                msg = f"PowerShell host exited unexpectedly (return code {self._process.returncode})"
                raise PowerShellError(msg)
            line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
            if line == sentinel:
                return lines
            lines.append(line)

    def _parse_reply(self, lines):
        payload = [line for line in lines if line.strip()]
        if not payload:
            msg = "PowerShell host returned an empty reply"
            raise PowerShellError(msg)

        *noise, envelope = payload
        for line in noise:
            logger.debug(f"PowerShell: {line}")

        try:
            reply = json.loads(envelope)
        except ValueError as e:
            msg = f"Unable to decode PowerShell reply: {envelope}"
            raise PowerShellError(msg) from e

        if not reply.get("ok"):
            raise PowerShellError(reply.get("error") or "Unknown PowerShell error")

        return reply.get("data")
