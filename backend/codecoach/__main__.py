import os


def _resolve_host() -> str:
    return os.getenv("HOST", os.getenv("CODECOACH_HOST", "127.0.0.1"))


def _resolve_port() -> int:
    value = os.getenv("PORT") or os.getenv("CODECOACH_PORT") or "8765"
    try:
        return int(value)
    except ValueError:
        return 8765


def main() -> None:
    import uvicorn

    uvicorn.run("codecoach.main:app", host=_resolve_host(), port=_resolve_port(), log_level="info")


if __name__ == "__main__":
    main()
