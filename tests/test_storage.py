"""
Object Storage Tests
"""
import boto3
import pytest
from botocore.stub import ANY, Stubber

from portfolio.assets.errors import AssetNotFound, StorageUnavailable
from portfolio.assets.storage import (
    IMAGE_CACHE_CONTROL,
    MemoryObjectStorage,
    ResourceKind,
    S3ObjectStorage,
    delete_with_fallback,
    fallback_attempts,
)

BUCKET = 'portfolio-assets'


@pytest.fixture
def local_file(tmp_path):
    path = tmp_path / 'page-1.jpg'
    path.write_bytes(b'jpeg bytes')
    return str(path)


@pytest.fixture
def s3_client():
    return boto3.client(
        's3',
        region_name='us-east-1',
        aws_access_key_id='testing',
        aws_secret_access_key='testing',
    )


@pytest.fixture
def s3(s3_client):
    return S3ObjectStorage(bucket=BUCKET, region='us-east-1', prefix='portfolio-cms', client=s3_client)


def key(kind, storage_id):
    return f'portfolio-cms/{kind}/{storage_id}'


class TestMemoryStorage:
    """Test the in-process object store"""

    def test_put_and_delete(self, local_file):
        storage = MemoryObjectStorage()
        stored = storage.put(local_file, 'resume-images/7', ResourceKind.IMAGE)

        assert stored.storage_id.startswith('resume-images/7/')
        assert stored.storage_id.endswith('.jpg')
        assert stored.url == f'memory://image/{stored.storage_id}'
        assert storage.get(stored.storage_id, ResourceKind.IMAGE) == b'jpeg bytes'
        assert storage.list_ids('resume-images/7') == [stored.storage_id]

        storage.delete(stored.storage_id, ResourceKind.IMAGE)
        assert storage.all_ids() == []

    def test_delete_wrong_kind_not_found(self, local_file):
        """Objects are namespaced by kind"""
        storage = MemoryObjectStorage()
        stored = storage.put(local_file, 'resumes/7', ResourceKind.RAW)
        with pytest.raises(AssetNotFound):
            storage.delete(stored.storage_id, ResourceKind.IMAGE)
        assert storage.exists(stored.storage_id, ResourceKind.RAW)

    def test_storage_id_from_url(self, local_file):
        storage = MemoryObjectStorage()
        stored = storage.put(local_file, 'profile-images/1', ResourceKind.IMAGE)
        assert storage.storage_id_from_url(stored.url) == stored.storage_id
        assert storage.storage_id_from_url('https://elsewhere/x.jpg') is None


class TestFallbackDelete:
    """Test deleting an object whose kind is not known"""

    def test_attempt_order(self):
        assert fallback_attempts(None) == (ResourceKind.RAW, ResourceKind.IMAGE)
        assert fallback_attempts(ResourceKind.RAW) == (ResourceKind.RAW, ResourceKind.IMAGE)
        assert fallback_attempts(ResourceKind.IMAGE) == (ResourceKind.IMAGE, ResourceKind.RAW)

    def test_falls_back_to_second_kind(self, local_file):
        """A document stored as an image is found on the second attempt"""
        storage = MemoryObjectStorage()
        stored = storage.put(local_file, 'resumes/7', ResourceKind.IMAGE)

        outcome = delete_with_fallback(storage, stored.storage_id, fallback_attempts(None))

        assert outcome.found
        assert outcome.deleted_kind is ResourceKind.IMAGE
        deletes = [c for c in storage.calls if c[0] == 'delete']
        assert deletes == [('delete', stored.storage_id, 'raw'), ('delete', stored.storage_id, 'image')]

    def test_first_success_stops(self, local_file):
        storage = MemoryObjectStorage()
        stored = storage.put(local_file, 'resumes/7', ResourceKind.RAW)

        outcome = delete_with_fallback(storage, stored.storage_id, fallback_attempts(ResourceKind.RAW))

        assert outcome.deleted_kind is ResourceKind.RAW
        assert len([c for c in storage.calls if c[0] == 'delete']) == 1

    def test_all_missing_is_success(self):
        """Deleting something already gone completes without error"""
        outcome = delete_with_fallback(MemoryObjectStorage(), 'resumes/7/gone.pdf', fallback_attempts(None))
        assert not outcome.found

    def test_unavailable_propagates(self):
        class DownStorage(MemoryObjectStorage):
            def delete(self, storage_id, kind):
                raise StorageUnavailable()

        with pytest.raises(StorageUnavailable):
            delete_with_fallback(DownStorage(), 'resumes/7/a.pdf', fallback_attempts(None))


class TestS3Storage:
    """Test the S3 provider against a stubbed client"""

    def test_put_image(self, s3, s3_client, local_file):
        stubber = Stubber(s3_client)
        stubber.add_response('put_object', {}, {
            'Bucket': BUCKET,
            'Key': ANY,
            'Body': ANY,
            'ContentType': 'image/jpeg',
            'CacheControl': IMAGE_CACHE_CONTROL,
        })
        with stubber:
            stored = s3.put(local_file, 'resume-images/7', ResourceKind.IMAGE)
        stubber.assert_no_pending_responses()

        assert stored.kind is ResourceKind.IMAGE
        assert stored.storage_id.startswith('resume-images/7/')
        assert stored.url == f'https://{BUCKET}.s3.us-east-1.amazonaws.com/{key("image", stored.storage_id)}'

    def test_put_failure_is_unavailable(self, s3, s3_client, local_file):
        stubber = Stubber(s3_client)
        stubber.add_client_error('put_object', service_error_code='SlowDown', http_status_code=503)
        with stubber, pytest.raises(StorageUnavailable):
            s3.put(local_file, 'resume-images/7', ResourceKind.IMAGE)

    def test_public_base_url(self, s3_client, local_file):
        storage = S3ObjectStorage(bucket=BUCKET, region='us-east-1', prefix='portfolio-cms',
                                  public_base_url='https://cdn.example.com/', client=s3_client)
        url = storage._url(key('raw', 'resumes/7/a.pdf'))
        assert url == 'https://cdn.example.com/portfolio-cms/raw/resumes/7/a.pdf'
        assert storage.storage_id_from_url(url) == 'resumes/7/a.pdf'

    def test_delete_existing(self, s3, s3_client):
        storage_id = 'resumes/7/a.pdf'
        params = {'Bucket': BUCKET, 'Key': key('raw', storage_id)}
        stubber = Stubber(s3_client)
        stubber.add_response('head_object', {}, params)
        stubber.add_response('delete_object', {}, params)
        with stubber:
            s3.delete(storage_id, ResourceKind.RAW)
        stubber.assert_no_pending_responses()

    def test_delete_missing_raises_not_found(self, s3, s3_client):
        stubber = Stubber(s3_client)
        stubber.add_client_error('head_object', service_error_code='404', http_status_code=404)
        with stubber, pytest.raises(AssetNotFound):
            s3.delete('resumes/7/a.pdf', ResourceKind.RAW)

    def test_fallback_against_s3(self, s3, s3_client):
        """Raw lookup misses, image lookup hits and is deleted"""
        storage_id = 'resumes/7/a.pdf'
        stubber = Stubber(s3_client)
        stubber.add_client_error('head_object', service_error_code='404', http_status_code=404,
                                 expected_params={'Bucket': BUCKET, 'Key': key('raw', storage_id)})
        image_params = {'Bucket': BUCKET, 'Key': key('image', storage_id)}
        stubber.add_response('head_object', {}, image_params)
        stubber.add_response('delete_object', {}, image_params)
        with stubber:
            outcome = delete_with_fallback(s3, storage_id, fallback_attempts(None))
        stubber.assert_no_pending_responses()
        assert outcome.deleted_kind is ResourceKind.IMAGE

    def test_head_error_is_unavailable(self, s3, s3_client):
        stubber = Stubber(s3_client)
        stubber.add_client_error('head_object', service_error_code='InternalError', http_status_code=500)
        with stubber, pytest.raises(StorageUnavailable):
            s3.exists('resumes/7/a.pdf', ResourceKind.RAW)

    def test_list_ids(self, s3, s3_client):
        stubber = Stubber(s3_client)
        stubber.add_response(
            'list_objects_v2',
            {'Contents': [{'Key': key('raw', 'resumes/7/a.pdf')}], 'IsTruncated': False},
            {'Bucket': BUCKET, 'Prefix': 'portfolio-cms/raw/resumes/7/'},
        )
        stubber.add_response(
            'list_objects_v2',
            {'IsTruncated': False},
            {'Bucket': BUCKET, 'Prefix': 'portfolio-cms/image/resumes/7/'},
        )
        with stubber:
            assert s3.list_ids('resumes/7') == ['resumes/7/a.pdf']

    def test_storage_id_from_bucket_url(self, s3):
        url = f'https://{BUCKET}.s3.us-east-1.amazonaws.com/portfolio-cms/image/blog-images/3/x.png'
        assert s3.storage_id_from_url(url) == 'blog-images/3/x.png'
        assert s3.storage_id_from_url('https://res.cloudinary.com/demo/image/upload/x.jpg') is None
