from __future__ import annotations

from Stream_Detection.runner import main


if __name__ == "__main__":
    raise SystemExit(main())
