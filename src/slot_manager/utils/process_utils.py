"""Process management utilities for stopping agent process trees."""

import logging
import os
import signal

logger = logging.getLogger(__name__)


def kill_process_tree(pid: int, sig: int = signal.SIGTERM) -> bool:
    """Send ``sig`` to the process group of ``pid``, falling back to the process alone.

    Agents started inside tmux lead their own process group, so killpg
    reaches their child processes too. Returns False when the process is gone
    or not ours to signal.
    """
    try:
        os.killpg(os.getpgid(pid), sig)
        return True
    except (ProcessLookupError, PermissionError) as e:
        logger.debug(f"Cannot signal process group of {pid}: {e}")
        return False
    except OSError:
        # Not a group leader
        try:
            os.kill(pid, sig)
            return True
        except (ProcessLookupError, PermissionError) as e:
            logger.debug(f"Cannot signal {pid}: {e}")
            return False
