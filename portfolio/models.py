"""
Database Models

Key Models:
- User: Account + public profile (owns one Resume, many Projects and Blogs)
- Resume: Uploaded PDF and its rendered page images (one per user)
- Project: Portfolio entry with an image gallery
- Blog: Post with an optional featured image

Asset pointers are stored as {url, caption, storageId, kind} JSON objects.
"""
import enum
import re
from datetime import datetime, timezone

from flask_login import UserMixin
from werkzeug.security import check_password_hash, generate_password_hash

from portfolio import db


def utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


class UserRole(enum.Enum):
    ADMIN = "admin"
    USER = "user"


class ProjectStatus(enum.Enum):
    COMPLETED = "completed"
    IN_PROGRESS = "in-progress"
    PLANNED = "planned"


class BlogStatus(enum.Enum):
    DRAFT = "draft"
    PUBLISHED = "published"


USERNAME_RE = re.compile(r"^[a-zA-Z0-9_-]{3,30}$")


class User(UserMixin, db.Model):
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(30), unique=True, nullable=False, index=True)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    role = db.Column(db.Enum(UserRole), default=UserRole.USER)

    # Profile
    first_name = db.Column(db.String(50))
    last_name = db.Column(db.String(50))
    title = db.Column(db.String(100))
    bio = db.Column(db.Text)
    location = db.Column(db.String(100))
    website = db.Column(db.String(200))
    profile_image_url = db.Column(db.String(500))
    profile_image_storage_id = db.Column(db.String(300))

    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    resume = db.relationship('Resume', back_populates='user', uselist=False, cascade='all, delete-orphan')
    projects = db.relationship('Project', back_populates='user', lazy='dynamic', cascade='all, delete-orphan')
    blogs = db.relationship('Blog', back_populates='user', lazy='dynamic', cascade='all, delete-orphan')

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)

    def profile_dict(self):
        return {
            'firstName': self.first_name,
            'lastName': self.last_name,
            'title': self.title,
            'bio': self.bio,
            'location': self.location,
            'website': self.website,
            'profileImage': self.profile_image_url,
        }

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
            'email': self.email,
            'role': self.role.value if self.role else None,
            'profile': self.profile_dict(),
        }


class Resume(db.Model):
    """
    A user's current resume generation.

    page_image_urls and page_image_storage_ids are parallel lists in page
    order; both have page_count entries.
    """
    __tablename__ = 'resumes'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), unique=True, nullable=False)

    original_file_name = db.Column(db.String(255), nullable=False)
    file_size = db.Column(db.Integer, nullable=False)
    page_count = db.Column(db.Integer, nullable=False, default=1)

    document_url = db.Column(db.String(500), nullable=False)
    document_storage_id = db.Column(db.String(300), nullable=False)
    page_image_urls = db.Column(db.JSON, nullable=False, default=list)
    page_image_storage_ids = db.Column(db.JSON, nullable=False, default=list)

    uploaded_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    user = db.relationship('User', back_populates='resume')

    def to_dict(self):
        """Convert resume to dictionary for API responses"""
        return {
            'id': self.id,
            'originalFileName': self.original_file_name,
            'documentUrl': self.document_url,
            'pageImageUrls': list(self.page_image_urls or []),
            # Names the dashboard client reads
            'pdfUrl': self.document_url,
            'imageUrls': list(self.page_image_urls or []),
            'pageCount': self.page_count,
            'fileSize': self.file_size,
            'uploadedAt': _iso(self.uploaded_at),
            'updatedAt': _iso(self.updated_at),
        }


class Project(db.Model):
    __tablename__ = 'projects'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    title = db.Column(db.String(100), nullable=False)
    description = db.Column(db.String(1000), nullable=False)
    short_description = db.Column(db.String(200))
    technologies = db.Column(db.JSON, default=list)
    category = db.Column(db.String(20), default='web')
    status = db.Column(db.Enum(ProjectStatus), default=ProjectStatus.COMPLETED)
    images = db.Column(db.JSON, nullable=False, default=list)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    user = db.relationship('User', back_populates='projects')

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'shortDescription': self.short_description,
            'technologies': list(self.technologies or []),
            'category': self.category,
            'status': self.status.value if self.status else None,
            'images': [_public_ref(i) for i in (self.images or [])],
            'createdAt': _iso(self.created_at),
            'updatedAt': _iso(self.updated_at),
        }


class Blog(db.Model):
    __tablename__ = 'blogs'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    title = db.Column(db.String(200), nullable=False)
    slug = db.Column(db.String(220), index=True)
    excerpt = db.Column(db.String(300))
    content = db.Column(db.Text, nullable=False)
    status = db.Column(db.Enum(BlogStatus), default=BlogStatus.DRAFT)
    featured_image = db.Column(db.JSON)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    user = db.relationship('User', back_populates='blogs')

    @staticmethod
    def make_slug(title):
        slug = re.sub(r"[^a-z0-9 -]", "", (title or "").lower())
        slug = re.sub(r"\s+", "-", slug.strip())
        return re.sub(r"-+", "-", slug).strip("-")

    def to_dict(self, include_content=True):
        data = {
            'id': self.id,
            'title': self.title,
            'slug': self.slug,
            'excerpt': self.excerpt,
            'status': self.status.value if self.status else None,
            'featuredImage': _public_ref(self.featured_image) if self.featured_image else None,
            'createdAt': _iso(self.created_at),
            'updatedAt': _iso(self.updated_at),
        }
        if include_content:
            data['content'] = self.content
        return data


def _public_ref(ref):
    return {
        'url': ref.get('url'),
        'caption': ref.get('caption') or '',
        'storageId': ref.get('storageId'),
    }
