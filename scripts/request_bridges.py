#!/usr/bin/env python3
"""
Request obfs4 bridges by hand, through an already running tor.

Writes each captcha to --image, asks for the answer on stdin (empty line
fetches a new captcha, "q" quits) and prints the bridge lines on success.
Nothing is written to the preference store.
"""
import argparse
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from app.core import state_machine as sm
from app.core.state_machine import ProtocolStateMachine
from app.moat.errors import StateError
from app.moat.network import NetworkControl
from app.moat.sink import ResultSink
from app.settings import settings


class RunningTor(NetworkControl):
    """tor is managed outside this script; there is nothing to start or reload."""

    def start_network(self) -> None:
        raise SystemExit("tor is not running")

    def reload_configuration(self) -> None:
        pass

    def poll_status(self) -> None:
        pass


class ConsoleSink(ResultSink):
    def __init__(self, image_path: str):
        self.image_path = image_path

    def challenge_ready(self, image: bytes) -> None:
        with open(self.image_path, "wb") as f:
            f.write(image)
        print(f"Captcha written to {self.image_path}")

    def bridges_obtained(self, lines, enable_bridges=True) -> None:
        for line in lines:
            print(line)

    def failed(self, message: str) -> None:
        print(f"Error: {message}", file=sys.stderr)


def main() -> int:
    ap = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    ap.add_argument("--socks-host", default=settings.SOCKS_PROXY_HOST_DEFAULT)
    ap.add_argument("--socks-port", type=int, default=settings.SOCKS_PROXY_PORT_DEFAULT)
    ap.add_argument("--base-url", default=settings.MOAT_BASE_URL)
    ap.add_argument("--image", default="captcha.jpg")
    args = ap.parse_args()

    machine = ProtocolStateMachine(RunningTor(), ConsoleSink(args.image), base_url=args.base_url)
    machine.on_status_changed("ON", args.socks_host, args.socks_port)

    try:
        while machine.state != sm.DONE:
            if machine.state == sm.CAPTCHA_DISPLAYED:
                answer = input("Solution (empty = new captcha, q = quit): ")
            else:
                answer = input("Press enter for a new captcha, q to quit: ")
            # submitted as typed; stripping is only for recognising commands
            command = answer.strip()
            if command.lower() == "q":
                return 1
            if not command or machine.state != sm.CAPTCHA_DISPLAYED:
                machine.refresh()
            else:
                machine.submit_solution(answer)
    except (EOFError, KeyboardInterrupt, StateError) as e:
        if isinstance(e, StateError):
            print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        machine.detach()
    return 0


if __name__ == "__main__":
    sys.exit(main())
