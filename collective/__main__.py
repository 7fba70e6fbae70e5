"""Entry point for ``python -m collective``.

Hook shims installed into ``.claude/hooks`` call
``python -m collective hook <name>`` with the JSON payload on stdin.
"""

from collective.cli.app import main

if __name__ == "__main__":
    main()
