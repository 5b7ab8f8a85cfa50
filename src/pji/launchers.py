"""Browser and clipboard capabilities."""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import sys
import webbrowser

logger = logging.getLogger(__name__)


class BrowserLauncher:
    """Opens URLs in the default browser."""

    def open(self, url: str) -> bool:
        try:
            return webbrowser.open(url)
        except webbrowser.Error as e:
            logger.warning("cannot open browser for %s: %s", url, e)
            return False


class Clipboard:
    """Copies text with the platform clipboard command."""

    def _candidates(self) -> list[list[str]]:
        if sys.platform == "darwin":
            return [["pbcopy"]]
        if os.name == "nt":
            return [["clip"]]
        return [
            ["wl-copy"],
            ["xclip", "-selection", "clipboard"],
            ["xsel", "--clipboard", "--input"],
        ]

    def copy(self, text: str) -> bool:
        """Copy ``text``; False when no clipboard command succeeded."""
        if not text:
            return False
        for command in self._candidates():
            if shutil.which(command[0]) is None:
                continue
            try:
                proc = subprocess.run(command, input=text, text=True, capture_output=True, check=False)
            except OSError as e:
                logger.debug("%s failed: %s", command[0], e)
                continue
            if proc.returncode == 0:
                return True
        logger.debug("no clipboard command available")
        return False
