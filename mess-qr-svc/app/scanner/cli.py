from __future__ import annotations
import asyncio
import logging
import typer

from .api import ApiError, MessQRClient, VerificationReply, scan_and_verify, verify_manual
from .camera import opencv_camera
from .loop import DEFAULT_INTERVAL, ScanSession, ScanState

app = typer.Typer(help="Scan your mess QR code and verify your membership")


def _print_reply(reply: VerificationReply) -> None:
    typer.echo(reply.message)
    member = reply.member or {}
    for plan in member.get("active_plans", []):
        typer.echo(f"  - {plan['plan_name']}: {plan['start_date']} to {plan['end_date']}")


async def _scan(api_url: str, token: str, camera_index: int, timeout: float, interval: float) -> VerificationReply | None:
    async with MessQRClient(api_url, token) as client:
        async with ScanSession(
            opencv_camera(camera_index),
            interval=interval,
            on_state_change=lambda s: typer.echo(f"[{s.value}]"),
        ) as session:
            try:
                outcome, reply = await scan_and_verify(session, client, timeout=timeout)
            except asyncio.TimeoutError:
                session.cancel()
                typer.echo("No QR code found.")
                code = typer.prompt("Enter the code manually (leave empty to quit)", default="", show_default=False)
                return await verify_manual(client, code) if code.strip() else None

            if outcome.state is ScanState.ERROR:
                typer.echo(outcome.error or "Camera error")
                code = typer.prompt("Enter the code manually (leave empty to quit)", default="", show_default=False)
                if not code.strip():
                    return None
                manual = session.submit_manual(code)
                return await client.verify_membership(manual.data, source="manual")
            return reply


@app.command("scan")
def scan(
    api_url: str = typer.Option("http://localhost:8004", "--api-url", envvar="MESS_QR_API_URL", help="mess-qr-svc base URL"),
    token: str = typer.Option(..., "--token", envvar="MESS_QR_TOKEN", help="Bearer token from authentication-svc"),
    camera_index: int = typer.Option(0, "--camera", help="OpenCV camera index"),
    timeout: float = typer.Option(60.0, "--timeout", help="Seconds to scan before offering manual entry"),
    interval: float = typer.Option(DEFAULT_INTERVAL, "--interval", help="Seconds between frame samples"),
    manual: str = typer.Option(None, "--manual", "-m", help="Verify a typed code instead of using the camera"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """
    Scan the QR code displayed at your mess, or pass --manual with the code text.
    """
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING)
    try:
        if manual is not None:
            reply = asyncio.run(_manual(api_url, token, manual))
        else:
            reply = asyncio.run(_scan(api_url, token, camera_index, timeout, interval))
    except ApiError as e:
        typer.echo(f"Verification failed: {e.detail}")
        raise typer.Exit(code=2)
    except ValueError as e:
        typer.echo(str(e))
        raise typer.Exit(code=2)

    if reply is None:
        typer.echo("Scan cancelled.")
        raise typer.Exit(code=1)
    _print_reply(reply)
    if not reply.is_valid:
        raise typer.Exit(code=1)


async def _manual(api_url: str, token: str, code: str) -> VerificationReply:
    async with MessQRClient(api_url, token) as client:
        return await verify_manual(client, code)


if __name__ == "__main__":
    app()
