"""tmux CLI implementation of the multiplexer driver."""

from __future__ import annotations

from taskmux.drivers.base import Window, WindowOpts
from taskmux.drivers.process import DEFAULT_TIMEOUT_SECONDS, run_command

SOCKET_PREFIX = "taskmux-"
_LIST_FORMAT = "#{window_id}|#{window_index}|#{window_name}"


class TmuxDriver:
    """Talks to one tmux session on a dedicated socket."""

    def __init__(
        self,
        session_name: str,
        *,
        socket_name: str | None = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self.session_name = session_name
        self.socket_name = socket_name or f"{SOCKET_PREFIX}{session_name}"
        self.timeout_seconds = timeout_seconds

    def _tmux(self, *args: str, strip: bool = True) -> str:
        return run_command(
            ["tmux", "-L", self.socket_name, *args],
            timeout_seconds=self.timeout_seconds,
            strip=strip,
        )

    def new_window(self, opts: WindowOpts) -> str:
        args = ["new-window", "-P", "-F", "#{window_id}", "-t", f"{self.session_name}:"]
        if opts.name:
            args.extend(["-n", opts.name])
        args.extend(["-c", str(opts.start_dir)])
        if opts.detached:
            args.append("-d")
        if opts.command:
            args.append(opts.command)
        return self._tmux(*args)

    def kill_window(self, target: str) -> None:
        self._tmux("kill-window", "-t", target)

    def rename_window(self, target: str, name: str) -> None:
        self._tmux("rename-window", "-t", target, name)

    def list_windows(self) -> list[Window]:
        output = self._tmux("list-windows", "-t", self.session_name, "-F", _LIST_FORMAT)
        return parse_window_listing(output)

    def split_window(self, target: str, *, horizontal: bool, command: str | None = None) -> None:
        args = ["split-window", "-t", target, "-h" if horizontal else "-v"]
        if command:
            args.append(command)
        self._tmux(*args)

    def send_keys(self, target: str, *keys: str) -> None:
        self._tmux("send-keys", "-t", target, *keys)

    def send_literal(self, target: str, text: str) -> None:
        self._tmux("send-keys", "-t", target, "-l", text)

    def capture_pane(self, target: str, lines: int) -> str:
        args = ["capture-pane", "-t", target, "-p"]
        if lines > 0:
            args.extend(["-S", f"-{lines}"])
        return self._tmux(*args, strip=False)


def parse_window_listing(output: str) -> list[Window]:
    windows: list[Window] = []
    for line in output.splitlines():
        parts = line.split("|", 2)
        if len(parts) < 3:  # noqa: PLR2004
            continue
        try:
            index = int(parts[1])
        except ValueError:
            index = 0
        windows.append(Window(window_id=parts[0], index=index, name=parts[2]))
    return windows
