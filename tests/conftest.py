import asyncio
import base64
import inspect
import io

import pytest
from PIL import Image


@pytest.fixture(autouse=True)
def _reset_pipeline_instance():
    """Ensure the app-wide pipeline does not leak between tests."""
    from app import deps

    deps._pipeline_instance = None
    yield
    deps._pipeline_instance = None


@pytest.fixture
def make_png():
    def _make(width: int = 40, height: int = 20, color=(255, 0, 0)) -> bytes:
        buffer = io.BytesIO()
        Image.new("RGB", (width, height), color).save(buffer, format="PNG")
        return buffer.getvalue()

    return _make


@pytest.fixture
def data_url():
    def _data_url(payload: bytes, mime: str = "image/png") -> str:
        return f"data:{mime};base64,{base64.b64encode(payload).decode('ascii')}"

    return _data_url


def pytest_pyfunc_call(pyfuncitem):
    """Run async tests marked with pytest.mark.asyncio without external plugins."""
    if "asyncio" not in pyfuncitem.keywords:
        return None
    if not inspect.iscoroutinefunction(pyfuncitem.obj):
        return None
    loop = asyncio.new_event_loop()
    try:
        asyncio.set_event_loop(loop)
        funcargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
        }
        loop.run_until_complete(pyfuncitem.obj(**funcargs))
    finally:
        loop.close()
        asyncio.set_event_loop(None)
    return True
