"""
API Blueprint - upload endpoints for resumes, profile images, projects and blogs,
plus the public portfolio reads

Every binary change goes through the AssetCoordinator; the views here only
parse the request, check ownership and shape the JSON response.
"""
from typing import List, Optional

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required, logout_user
from werkzeug.exceptions import HTTPException, RequestEntityTooLarge

from portfolio import db
from portfolio.assets import AssetError, AssetKind, Upload, UploadKind, get_assets, get_coordinator
from portfolio.assets.errors import MissingFile, OwnerNotFound
from portfolio.models import Blog, BlogStatus, Project, ProjectStatus, Resume, User

api_bp = Blueprint('api', __name__)

PROJECT_CATEGORIES = ('web', 'mobile', 'desktop', 'api', 'other')


# ============ Error Handlers ============

@api_bp.errorhandler(AssetError)
def handle_asset_error(e):
    return jsonify(e.to_dict()), e.status_code


@api_bp.errorhandler(RequestEntityTooLarge)
def handle_too_large(e):
    return jsonify({'message': 'File too large'}), 413


@api_bp.errorhandler(HTTPException)
def handle_http_error(e):
    return jsonify({'message': e.description}), e.code


@api_bp.errorhandler(Exception)
def handle_unexpected(e):
    current_app.logger.exception('Unhandled API error')
    return jsonify({'message': 'Something went wrong'}), 500


# ============ Helper Functions ============

def _upload(field: str) -> Optional[Upload]:
    file = request.files.get(field)
    if file is None or not file.filename:
        return None
    return Upload.from_file_storage(file)


def _uploads(field: str) -> List[Upload]:
    return [Upload.from_file_storage(f) for f in request.files.getlist(field) if f and f.filename]


def _form():
    return request.get_json(silent=True) or request.form


def _owned(model, obj_id: int, label: str):
    obj = db.session.get(model, obj_id)
    if obj is None or obj.user_id != current_user.id:
        raise OwnerNotFound(f'{label} not found')
    return obj


def _split_list(value) -> List[str]:
    if isinstance(value, list):
        return [str(v).strip() for v in value if str(v).strip()]
    return [v.strip() for v in (value or '').split(',') if v.strip()]


def _truthy(value) -> bool:
    return str(value).strip().lower() in {'1', 'true', 'yes', 'on'}


def _bad_request(message: str):
    return jsonify({'message': message}), 400


def _public_user(username: str) -> Optional[User]:
    return User.query.filter_by(username=username, is_active=True).first()


def _public_user_dict(user: User):
    return {'username': user.username, 'profile': user.profile_dict()}


# ============ Resume ============

@api_bp.route('/resume/upload', methods=['POST'])
@login_required
def upload_resume():
    upload = _upload('resume')
    if upload is None:
        raise MissingFile()

    current_app.logger.info('Resume upload from user %s: %s (%d bytes)', current_user.id, upload.filename, upload.size)
    get_coordinator().replace_resume(current_user.id, upload)

    resume = Resume.query.filter_by(user_id=current_user.id).first()
    return jsonify({'message': 'Resume uploaded successfully', 'resume': resume.to_dict()}), 201


@api_bp.route('/resume', methods=['GET'])
@login_required
def get_resume():
    resume = Resume.query.filter_by(user_id=current_user.id).first()
    if resume is None:
        return jsonify({'message': 'No resume found'}), 404
    return jsonify({'resume': resume.to_dict()})


@api_bp.route('/resume/<username>', methods=['GET'])
def get_resume_by_username(username):
    user = _public_user(username)
    if user is None:
        return jsonify({'message': 'User not found'}), 404
    if user.resume is None:
        return jsonify({'message': 'No resume found for this user'}), 404
    return jsonify({
        'resume': user.resume.to_dict(),
        'user': _public_user_dict(user),
    })


@api_bp.route('/resume', methods=['DELETE'])
@login_required
def delete_resume():
    get_coordinator().delete_resume(current_user.id)
    return jsonify({'message': 'Resume deleted successfully'})


# ============ Users ============

PROFILE_FIELDS = {
    'firstName': 'first_name',
    'lastName': 'last_name',
    'title': 'title',
    'bio': 'bio',
    'location': 'location',
    'website': 'website',
}


@api_bp.route('/users/profile', methods=['GET'])
@login_required
def get_profile():
    return jsonify({'user': current_user.to_dict()})


@api_bp.route('/users/profile', methods=['PUT'])
@login_required
def update_profile():
    data = _form()
    for key, attr in PROFILE_FIELDS.items():
        if key in data:
            setattr(current_user, attr, (data.get(key) or '').strip() or None)
    db.session.commit()
    return jsonify({'message': 'Profile updated successfully', 'user': current_user.to_dict()})


@api_bp.route('/users/profile/image', methods=['POST'])
@login_required
def upload_profile_image():
    upload = _upload('image')
    if upload is None:
        raise MissingFile('No image file uploaded')
    get_coordinator().replace_profile_image(current_user.id, upload)
    return jsonify({'message': 'Profile image updated', 'user': current_user.to_dict()})


@api_bp.route('/users/profile/image', methods=['DELETE'])
@login_required
def remove_profile_image():
    get_coordinator().remove_profile_image(current_user.id)
    return jsonify({'message': 'Profile image removed', 'user': current_user.to_dict()})


@api_bp.route('/users/account', methods=['DELETE'])
@login_required
def delete_account():
    user_id = current_user.id
    user = db.session.get(User, user_id)
    get_coordinator().purge_user(user)

    db.session.delete(user)
    db.session.commit()
    logout_user()
    current_app.logger.info('Account %s deleted', user_id)
    return jsonify({'message': 'Account deleted successfully'})


# ============ Projects ============

def _apply_project_fields(project: Project, data, creating: bool):
    title = (data.get('title') or '').strip()
    description = (data.get('description') or '').strip()
    if creating or 'title' in data:
        if not 1 <= len(title) <= 100:
            return 'Title must be between 1 and 100 characters'
        project.title = title
    if creating or 'description' in data:
        if not 1 <= len(description) <= 1000:
            return 'Description must be between 1 and 1000 characters'
        project.description = description
    if 'shortDescription' in data:
        short = (data.get('shortDescription') or '').strip()
        if len(short) > 200:
            return 'Short description must be less than 200 characters'
        project.short_description = short or None
    if 'technologies' in data:
        project.technologies = _split_list(data.get('technologies'))
    if data.get('category'):
        if data['category'] not in PROJECT_CATEGORIES:
            return 'Invalid category'
        project.category = data['category']
    if data.get('status'):
        try:
            project.status = ProjectStatus(data['status'])
        except ValueError:
            return 'Invalid status'
    return None


@api_bp.route('/projects', methods=['GET'])
@login_required
def list_projects():
    query = Project.query.filter_by(user_id=current_user.id)
    if request.args.get('status'):
        try:
            query = query.filter_by(status=ProjectStatus(request.args['status']))
        except ValueError:
            return _bad_request('Invalid status')
    if request.args.get('category'):
        query = query.filter_by(category=request.args['category'])
    projects = query.order_by(Project.created_at.desc()).all()
    return jsonify({'projects': [p.to_dict() for p in projects]})


@api_bp.route('/projects/<username>', methods=['GET'])
def get_projects_by_username(username):
    user = _public_user(username)
    if user is None:
        return jsonify({'message': 'User not found'}), 404

    query = user.projects.filter_by(status=ProjectStatus.COMPLETED)
    if request.args.get('category'):
        query = query.filter_by(category=request.args['category'])
    query = query.order_by(Project.created_at.desc())
    limit = request.args.get('limit', type=int)
    if limit and limit > 0:
        query = query.limit(limit)
    return jsonify({
        'projects': [p.to_dict() for p in query.all()],
        'user': _public_user_dict(user),
    })


@api_bp.route('/projects', methods=['POST'])
@login_required
def create_project():
    uploads = _uploads('images')
    if uploads:
        get_assets().staging.validate_batch(uploads, UploadKind.IMAGE)

    project = Project(user_id=current_user.id, images=[])
    error = _apply_project_fields(project, _form(), creating=True)
    if error:
        return _bad_request(error)
    db.session.add(project)
    db.session.commit()

    if uploads:
        try:
            get_coordinator().add_project_images(project.id, uploads)
        except AssetError:
            db.session.delete(project)
            db.session.commit()
            raise

    return jsonify({'message': 'Project created successfully', 'project': project.to_dict()}), 201


@api_bp.route('/projects/<int:project_id>', methods=['PUT'])
@login_required
def update_project(project_id):
    project = _owned(Project, project_id, 'Project')
    uploads = _uploads('images')
    if uploads:
        get_assets().staging.validate_batch(uploads, UploadKind.IMAGE)

    error = _apply_project_fields(project, _form(), creating=False)
    if error:
        db.session.rollback()
        return _bad_request(error)

    # Field edits stay pending until the image swap commits them with the pointers.
    try:
        if uploads:
            get_coordinator().add_project_images(project.id, uploads)
        db.session.commit()
    except AssetError:
        db.session.rollback()
        raise

    return jsonify({'message': 'Project updated successfully', 'project': project.to_dict()})


@api_bp.route('/projects/<int:project_id>/images/<path:storage_id>', methods=['DELETE'])
@login_required
def remove_project_image(project_id, storage_id):
    project = _owned(Project, project_id, 'Project')
    get_coordinator().remove_project_image(project.id, storage_id)
    return jsonify({'message': 'Image removed', 'project': project.to_dict()})


@api_bp.route('/projects/<int:project_id>', methods=['DELETE'])
@login_required
def delete_project(project_id):
    project = _owned(Project, project_id, 'Project')
    get_coordinator().purge(project.id, AssetKind.PROJECT_IMAGES)

    db.session.delete(project)
    db.session.commit()
    return jsonify({'message': 'Project deleted successfully'})


# ============ Blogs ============

def _apply_blog_fields(blog: Blog, data, creating: bool):
    if creating or 'title' in data:
        title = (data.get('title') or '').strip()
        if not 1 <= len(title) <= 200:
            return 'Title must be between 1 and 200 characters'
        blog.title = title
        blog.slug = Blog.make_slug(title)
    if creating or 'content' in data:
        content = (data.get('content') or '').strip()
        if not content:
            return 'Content is required'
        blog.content = content
    if 'excerpt' in data:
        excerpt = (data.get('excerpt') or '').strip()
        if len(excerpt) > 300:
            return 'Excerpt must be less than 300 characters'
        blog.excerpt = excerpt or None
    if data.get('status'):
        try:
            blog.status = BlogStatus(data['status'])
        except ValueError:
            return 'Invalid status'
    return None


@api_bp.route('/blogs', methods=['GET'])
@login_required
def list_blogs():
    query = Blog.query.filter_by(user_id=current_user.id)
    if request.args.get('status'):
        try:
            query = query.filter_by(status=BlogStatus(request.args['status']))
        except ValueError:
            return _bad_request('Invalid status')
    blogs = query.order_by(Blog.created_at.desc()).all()
    return jsonify({'blogs': [b.to_dict() for b in blogs]})


@api_bp.route('/blogs/<username>', methods=['GET'])
def get_blogs_by_username(username):
    user = _public_user(username)
    if user is None:
        return jsonify({'message': 'User not found'}), 404

    limit = request.args.get('limit', 10, type=int)
    page = request.args.get('page', 1, type=int)
    limit = limit if limit and limit > 0 else 10
    page = page if page and page > 0 else 1

    query = user.blogs.filter_by(status=BlogStatus.PUBLISHED)
    total = query.count()
    blogs = query.order_by(Blog.created_at.desc()).offset((page - 1) * limit).limit(limit).all()
    return jsonify({
        'blogs': [b.to_dict(include_content=False) for b in blogs],
        'pagination': {'current': page, 'pages': -(-total // limit), 'total': total},
        'user': _public_user_dict(user),
    })


@api_bp.route('/blogs/<username>/<slug>', methods=['GET'])
def get_blog_by_slug(username, slug):
    user = _public_user(username)
    if user is None:
        return jsonify({'message': 'User not found'}), 404
    blog = user.blogs.filter_by(slug=slug, status=BlogStatus.PUBLISHED).first()
    if blog is None:
        return jsonify({'message': 'Blog post not found'}), 404
    return jsonify({'blog': blog.to_dict(), 'user': _public_user_dict(user)})


@api_bp.route('/blogs', methods=['POST'])
@login_required
def create_blog():
    upload = _upload('featuredImage')
    if upload is not None:
        get_assets().staging.validate(upload, UploadKind.IMAGE)

    blog = Blog(user_id=current_user.id)
    error = _apply_blog_fields(blog, _form(), creating=True)
    if error:
        return _bad_request(error)
    db.session.add(blog)
    db.session.commit()

    if upload is not None:
        try:
            get_coordinator().replace_blog_image(blog.id, upload)
        except AssetError:
            db.session.delete(blog)
            db.session.commit()
            raise

    return jsonify({'message': 'Blog created successfully', 'blog': blog.to_dict()}), 201


@api_bp.route('/blogs/<int:blog_id>', methods=['PUT'])
@login_required
def update_blog(blog_id):
    blog = _owned(Blog, blog_id, 'Blog')
    data = _form()
    upload = _upload('featuredImage')
    if upload is not None:
        get_assets().staging.validate(upload, UploadKind.IMAGE)

    error = _apply_blog_fields(blog, data, creating=False)
    if error:
        db.session.rollback()
        return _bad_request(error)

    coordinator = get_coordinator()
    try:
        if upload is not None:
            coordinator.replace_blog_image(blog.id, upload)
        elif _truthy(data.get('removeFeaturedImage')):
            coordinator.remove_blog_image(blog.id)
        db.session.commit()
    except AssetError:
        db.session.rollback()
        raise

    return jsonify({'message': 'Blog updated successfully', 'blog': blog.to_dict()})


@api_bp.route('/blogs/<int:blog_id>', methods=['DELETE'])
@login_required
def delete_blog(blog_id):
    blog = _owned(Blog, blog_id, 'Blog')
    get_coordinator().purge(blog.id, AssetKind.BLOG_FEATURED_IMAGE)

    db.session.delete(blog)
    db.session.commit()
    return jsonify({'message': 'Blog deleted successfully'})


# ============ Portfolio ============

def _portfolio_stats(user: User):
    return {
        'totalProjects': user.projects.filter_by(status=ProjectStatus.COMPLETED).count(),
        'totalBlogs': user.blogs.filter_by(status=BlogStatus.PUBLISHED).count(),
    }


@api_bp.route('/portfolio/<username>', methods=['GET'])
def get_portfolio(username):
    user = _public_user(username)
    if user is None:
        return jsonify({'message': 'Portfolio not found'}), 404

    projects = (user.projects.filter_by(status=ProjectStatus.COMPLETED)
                .order_by(Project.created_at.desc()).limit(6).all())
    blogs = (user.blogs.filter_by(status=BlogStatus.PUBLISHED)
             .order_by(Blog.created_at.desc()).limit(3).all())

    return jsonify({'portfolio': {
        'user': dict(_public_user_dict(user), id=user.id,
                      createdAt=user.created_at.isoformat() if user.created_at else None),
        'projects': [p.to_dict() for p in projects],
        'blogs': [b.to_dict(include_content=False) for b in blogs],
        'resume': user.resume.to_dict() if user.resume else None,
        'stats': _portfolio_stats(user),
    }})


@api_bp.route('/portfolio/<username>/stats', methods=['GET'])
def get_portfolio_stats(username):
    user = _public_user(username)
    if user is None:
        return jsonify({'message': 'Portfolio not found'}), 404
    return jsonify({'stats': _portfolio_stats(user)})
