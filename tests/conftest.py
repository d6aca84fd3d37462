import io

import pytest

from ghflow.ui.console import Console, set_console


class CapturedConsole(Console):
    def __init__(self, debug: bool = False):
        self.out = io.StringIO()
        self.err = io.StringIO()
        super().__init__(debug=debug, stream=self.out, err_stream=self.err)

    @property
    def text(self) -> str:
        return self.out.getvalue() + self.err.getvalue()


@pytest.fixture
def console():
    c = CapturedConsole()
    set_console(c)
    yield c
    set_console(Console())


