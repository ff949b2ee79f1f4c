import subprocess

from sidecar_executor.errors import ContainerError


DOCKER_BIN = "docker"


def _run_docker(args: list[str], timeout_s: float = 30.0) -> str:
    try:
        completed = subprocess.run(
            [DOCKER_BIN, *args],
            capture_output=True,
            check=False,
            text=True,
            timeout=timeout_s,
        )
    except subprocess.TimeoutExpired as exc:
        raise TimeoutError(f"docker {args[0]} timed out after {timeout_s}s") from exc
    except OSError as exc:
        raise ContainerError(args[0], str(exc)) from exc
    if completed.returncode != 0:
        stderr = (completed.stderr or "").strip()
        stdout = (completed.stdout or "").strip()
        detail = stderr or stdout or f"docker exited {completed.returncode}"
        raise ContainerError(args[0], detail)
    return (completed.stdout or "").strip()


def _popen_docker(args: list[str]) -> subprocess.Popen:
    try:
        return subprocess.Popen(
            [DOCKER_BIN, *args],
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )
    except OSError as exc:
        raise ContainerError(args[0], str(exc)) from exc
