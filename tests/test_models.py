"""
Database Model and Pointer Record Tests
"""
import pytest

from portfolio import db
from portfolio.assets import AssetKind, AssetRef, PointerSet, ResourceKind
from portfolio.assets.errors import OwnerNotFound, RecordPersistFailure
from portfolio.models import Blog, Resume, User


def ref(storage_id, kind=ResourceKind.IMAGE):
    return AssetRef(url=f'memory://{kind.value}/{storage_id}', storage_id=storage_id, kind=kind)


class TestUser:
    """Test User model"""

    def test_password(self, test_user):
        assert test_user.check_password('testpassword123')
        assert not test_user.check_password('wrong')

    def test_to_dict(self, test_user):
        data = test_user.to_dict()
        assert data['username'] == 'testuser'
        assert data['role'] == 'user'
        assert data['profile']['firstName'] == 'Test'
        assert data['profile']['profileImage'] is None


class TestBlog:
    """Test Blog model"""

    def test_make_slug(self):
        assert Blog.make_slug('Hello,  World!  Again') == 'hello-world-again'


class TestPointerSet:
    """Test pointer set helpers"""

    def test_refs_and_ids(self):
        pointers = PointerSet(document=ref('resumes/1/a.pdf', ResourceKind.RAW),
                              pages=[ref('resume-images/1/p1.jpg'), ref('resume-images/1/p2.jpg')])
        assert pointers.page_count == 2
        assert pointers.storage_ids() == ['resumes/1/a.pdf', 'resume-images/1/p1.jpg', 'resume-images/1/p2.jpg']
        assert not pointers.is_empty()
        assert PointerSet().is_empty()

    def test_json_without_kind(self):
        """Pointers saved before kinds were recorded load with kind None"""
        loaded = AssetRef.from_json({'url': 'https://cdn/x.jpg', 'caption': 'Cover'})
        assert loaded.kind is None
        assert loaded.storage_id is None
        assert loaded.caption == 'Cover'


class TestRecordStore:
    """Test reading and swapping pointer sets on owning rows"""

    def test_resume_swap(self, assets, test_user):
        records = assets.records
        assert records.load(test_user.id, AssetKind.RESUME) is None

        new = PointerSet(document=ref('resumes/1/a.pdf', ResourceKind.RAW),
                         pages=[ref('resume-images/1/p1.jpg')],
                         original_file_name='cv.pdf', file_size=1234)
        previous = records.swap(test_user.id, AssetKind.RESUME, new)
        assert previous is None

        resume = Resume.query.filter_by(user_id=test_user.id).one()
        assert resume.page_count == 1
        assert resume.file_size == 1234
        assert resume.page_image_storage_ids == ['resume-images/1/p1.jpg']

        loaded = records.load(test_user.id, AssetKind.RESUME)
        assert loaded.document.kind is ResourceKind.RAW
        assert loaded.storage_ids() == new.storage_ids()

        previous = records.swap(test_user.id, AssetKind.RESUME, None)
        assert previous.storage_ids() == new.storage_ids()
        assert Resume.query.filter_by(user_id=test_user.id).first() is None

    def test_resume_missing_storage_ids(self, assets, test_user):
        """Rows written without page storage ids still load every page"""
        db.session.add(Resume(
            user_id=test_user.id,
            original_file_name='old.pdf',
            file_size=10,
            page_count=2,
            document_url='memory://raw/resumes/1/a.pdf',
            document_storage_id='resumes/1/a.pdf',
            page_image_urls=['memory://image/resume-images/1/p1.jpg', 'memory://image/resume-images/1/p2.jpg'],
            page_image_storage_ids=[],
        ))
        db.session.commit()

        loaded = assets.records.load(test_user.id, AssetKind.RESUME)
        assert len(loaded.pages) == 2
        assert all(p.storage_id is None for p in loaded.pages)

    def test_profile_swap(self, assets, test_user):
        assets.records.swap(test_user.id, AssetKind.PROFILE_IMAGE, PointerSet(images=[ref('profile-images/1/a.png')]))
        user = db.session.get(User, test_user.id)
        assert user.profile_image_storage_id == 'profile-images/1/a.png'
        assert user.profile_image_url == 'memory://image/profile-images/1/a.png'

    def test_unknown_owner(self, assets):
        with pytest.raises(OwnerNotFound) as exc:
            assets.records.swap(404, AssetKind.BLOG_FEATURED_IMAGE, None)
        assert exc.value.message == 'Blog not found'

    def test_require_owner(self, assets, test_user):
        assets.records.require_owner(test_user.id, AssetKind.RESUME)
        with pytest.raises(OwnerNotFound) as exc:
            assets.records.require_owner(404, AssetKind.RESUME)
        assert exc.value.message == 'User not found'

    def test_database_error_on_load(self, assets, test_user, monkeypatch):
        from sqlalchemy.exc import OperationalError

        def fail(*args, **kwargs):
            raise OperationalError('SELECT', {}, Exception('database is locked'))

        monkeypatch.setattr(assets.records, '_owner', fail)
        with pytest.raises(RecordPersistFailure):
            assets.records.load(test_user.id, AssetKind.PROFILE_IMAGE)

    def test_database_error(self, assets, test_user, monkeypatch):
        from sqlalchemy.exc import OperationalError

        def fail():
            raise OperationalError('COMMIT', {}, Exception('disk I/O error'))

        monkeypatch.setattr(db.session, 'commit', fail)
        with pytest.raises(RecordPersistFailure):
            assets.records.swap(test_user.id, AssetKind.PROFILE_IMAGE, PointerSet(images=[ref('profile-images/1/a.png')]))
