#!/usr/bin/env python
"""Export FastAPI OpenAPI schema to relay/openapi.yaml."""

from __future__ import annotations

import sys
from pathlib import Path

import yaml


def main() -> None:
    repo_root = Path(__file__).resolve().parent.parent
    output_path = repo_root / "relay" / "openapi.yaml"

    if str(repo_root) not in sys.path:
        sys.path.insert(0, str(repo_root))

    from relay.main import create_app  # noqa: WPS433

    schema = create_app().openapi()
    output_path.write_text(yaml.dump(schema, sort_keys=False), encoding="utf-8")
    print(f"Wrote {output_path.relative_to(repo_root)}")


if __name__ == "__main__":
    main()
