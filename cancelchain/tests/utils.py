import typing as t
from cancelchain.outcome import Outcome

import logging
logger = logging.getLogger(__name__)
# logging.basicConfig(level=logging.DEBUG)

class Capture:
    "A producer which keeps the capabilities it's given, so a test can settle the future by hand"
    def __call__(self, fulfill, fail, register_cancel_handler) -> None:
        logger.debug("Capture: producer called")
        self.fulfill = fulfill
        self.fail = fail
        self.register_cancel_handler = register_cancel_handler

def outcome_of(fut) -> t.Optional[Outcome]:
    "The outcome of this future if it has settled, without waiting for it"
    box: t.List[Outcome] = []
    fut.get_cb(box.append)
    return box[0] if box else None
