"""
Test Configuration and Fixtures
"""
import io
import os

import fitz
import PyPDF2
import pytest
from PIL import Image

os.environ.setdefault('SECRET_KEY', 'test-secret-key')

from portfolio import create_app, db
from portfolio.assets import AssetCoordinator, Upload, get_assets
from portfolio.assets.context import EXTENSION_KEY, build_asset_context
from portfolio.models import Blog, Project, User


# ============ File Builders ============

def make_pdf(pages=1, widths=None):
    """Build a small PDF with one line of text per page.

    ``widths`` gives every page its own width in points and overrides ``pages``.
    """
    doc = fitz.open()
    for i, width in enumerate(widths or [200] * pages):
        page = doc.new_page(width=width, height=260)
        page.insert_text((20, 60), f'Page {i + 1}')
    data = doc.tobytes()
    doc.close()
    return data


def make_encrypted_pdf():
    doc = fitz.open()
    doc.new_page(width=200, height=260)
    data = doc.tobytes(encryption=fitz.PDF_ENCRYPT_RC4_128, owner_pw='owner', user_pw='secret')
    doc.close()
    return data


def make_empty_pdf():
    writer = PyPDF2.PdfWriter()
    buf = io.BytesIO()
    writer.write(buf)
    return buf.getvalue()


def make_image(fmt='PNG', size=(16, 16), color='red'):
    buf = io.BytesIO()
    Image.new('RGB', size, color).save(buf, fmt)
    return buf.getvalue()


def make_upload(data, filename='resume.pdf', mimetype='application/pdf', size=None):
    return Upload(
        stream=io.BytesIO(data),
        filename=filename,
        mimetype=mimetype,
        size=len(data) if size is None else size,
    )


def pdf_upload(pages=1, filename='resume.pdf'):
    return make_upload(make_pdf(pages), filename=filename)


def image_upload(filename='photo.png', mimetype='image/png'):
    return make_upload(make_image(), filename=filename, mimetype=mimetype)


# ============ App Fixtures ============

@pytest.fixture(scope='function')
def app(tmp_path):
    """Fresh app, in-memory database and in-memory object storage per test"""
    app = create_app('testing')
    app.config['STAGING_DIR'] = str(tmp_path / 'staging')
    app.extensions[EXTENSION_KEY] = build_asset_context(app.config)

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client"""
    return app.test_client()


@pytest.fixture(scope='function')
def assets(app):
    return get_assets()


@pytest.fixture(scope='function')
def storage(assets):
    return assets.storage


@pytest.fixture(scope='function')
def states():
    """Collects every coordinator state transition"""
    return []


@pytest.fixture(scope='function')
def coordinator(assets, states):
    return AssetCoordinator(assets, listener=lambda op, state: states.append(state))


@pytest.fixture(scope='function')
def test_user(app):
    """Create test user"""
    user = User(
        username='testuser',
        email='test@example.com',
        first_name='Test',
        last_name='User',
    )
    user.set_password('testpassword123')
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture(scope='function')
def other_user(app):
    user = User(username='otheruser', email='other@example.com')
    user.set_password('otherpassword123')
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture(scope='function')
def test_project(test_user):
    project = Project(user_id=test_user.id, title='Portfolio', description='A portfolio site', images=[])
    db.session.add(project)
    db.session.commit()
    return project


@pytest.fixture(scope='function')
def test_blog(test_user):
    blog = Blog(user_id=test_user.id, title='Hello', slug='hello', content='First post')
    db.session.add(blog)
    db.session.commit()
    return blog


@pytest.fixture(scope='function')
def authenticated_client(client, test_user):
    """Create authenticated test client"""
    response = client.post('/api/auth/login', json={
        'email': 'test@example.com',
        'password': 'testpassword123',
    })
    assert response.status_code == 200
    return client
