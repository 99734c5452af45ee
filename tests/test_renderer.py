"""
PDF Rendering Tests
"""
import os
import threading
import time

import pytest
from PIL import Image

from portfolio.assets.deadline import Cancelled, Failed, Ok, TimedOut, run_with_deadline
from portfolio.assets.errors import DocumentCorrupt, DocumentEncrypted
from portfolio.assets.renderer import DocumentRenderer, page_filename

from conftest import make_empty_pdf, make_encrypted_pdf, make_pdf


def write(tmp_path, name, data):
    path = tmp_path / name
    path.write_bytes(data)
    return str(path)


@pytest.fixture
def renderer():
    return DocumentRenderer(dpi=50, jpeg_quality=80)


@pytest.fixture
def out_dir(tmp_path):
    path = tmp_path / 'out'
    path.mkdir()
    return str(path)


class TestProbe:
    """Test the structural check done before rendering"""

    def test_page_count(self, renderer, tmp_path):
        assert renderer.probe(write(tmp_path, 'a.pdf', make_pdf(3))) == 3

    def test_not_a_pdf(self, renderer, tmp_path):
        with pytest.raises(DocumentCorrupt) as exc:
            renderer.probe(write(tmp_path, 'a.pdf', b'this is not a pdf'))
        assert exc.value.status_code == 422

    def test_encrypted(self, renderer, tmp_path):
        """Password-protected PDFs are rejected, not rendered"""
        with pytest.raises(DocumentEncrypted) as exc:
            renderer.probe(write(tmp_path, 'a.pdf', make_encrypted_pdf()))
        assert 'Password-protected' in exc.value.message

    def test_zero_pages(self, renderer, tmp_path):
        with pytest.raises(DocumentCorrupt) as exc:
            renderer.probe(write(tmp_path, 'a.pdf', make_empty_pdf()))
        assert exc.value.message == 'The PDF has no pages.'


class TestRender:
    """Test page image output"""

    def test_renders_every_page_in_order(self, renderer, tmp_path, out_dir):
        """Three pages in, three page-N.jpg files out, in page order"""
        result = renderer.render(write(tmp_path, 'a.pdf', make_pdf(3)), out_dir)

        assert result.page_count == 3
        assert [os.path.basename(p) for p in result.page_paths] == ['page-1.jpg', 'page-2.jpg', 'page-3.jpg']
        for path in result.page_paths:
            with Image.open(path) as img:
                assert img.format == 'JPEG'
                assert img.mode == 'RGB'

    def test_single_page(self, renderer, tmp_path, out_dir):
        result = renderer.render(write(tmp_path, 'a.pdf', make_pdf(1)), out_dir)
        assert result.page_count == 1
        assert len(result.page_paths) == 1

    def test_corrupt_writes_nothing(self, renderer, tmp_path, out_dir):
        with pytest.raises(DocumentCorrupt):
            renderer.render(write(tmp_path, 'a.pdf', b'%PDF-1.4 garbage'), out_dir)
        assert os.listdir(out_dir) == []

    def test_cancel_stops_between_pages(self, renderer, tmp_path, out_dir):
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(Cancelled):
            renderer.render(write(tmp_path, 'a.pdf', make_pdf(2)), out_dir, cancel=cancel)
        assert os.listdir(out_dir) == []

    def test_render_with_deadline_ok(self, renderer, tmp_path, out_dir):
        result = renderer.render_with_deadline(write(tmp_path, 'a.pdf', make_pdf(2)), out_dir, timeout=30)
        assert isinstance(result, Ok)
        assert result.value.page_count == 2

    def test_render_with_deadline_failed(self, renderer, tmp_path, out_dir):
        result = renderer.render_with_deadline(write(tmp_path, 'a.pdf', b'nope'), out_dir, timeout=30)
        assert isinstance(result, Failed)
        assert isinstance(result.error, DocumentCorrupt)

    def test_page_filename(self):
        assert page_filename(12) == 'page-12.jpg'


class TestDeadline:
    """Test deadline-bounded execution"""

    def test_ok(self):
        result = run_with_deadline(lambda x, cancel: x * 2, 1, 21)
        assert result == Ok(42)

    def test_timeout_sets_cancel(self):
        """A job past its deadline is told to stop"""
        seen = {}

        def slow(cancel):
            seen['cancelled'] = cancel.wait(5)
            raise Cancelled()

        started = time.monotonic()
        result = run_with_deadline(slow, 0.05)
        assert isinstance(result, TimedOut)
        assert result.timeout == 0.05
        assert seen['cancelled'] is True
        assert time.monotonic() - started < 5

    def test_failure_is_returned(self):
        def broken(cancel):
            raise ValueError('bad input')

        result = run_with_deadline(broken, 1)
        assert isinstance(result, Failed)
        assert str(result.error) == 'bad input'
