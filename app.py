import logging
from functools import wraps
from flask import Flask, render_template, redirect, url_for, flash, request, abort, session, g
from flask_login import LoginManager, login_user, logout_user, login_required, current_user
from flask_wtf.csrf import CSRFProtect
from werkzeug.exceptions import RequestEntityTooLarge
from config import Config
from models import User
from forms import (LoginForm, RegisterForm, ForgotPasswordForm, ResetPasswordForm, TicketForm,
                   TicketStatusForm, TicketCommentForm, AttachmentForm, TaskForm, UserForm, UserEditForm,
                   TicketFilterForm, TaskFilterForm)
from api_client import HelpdeskAPI, APIError, token_expired
from recurrence import describe
from submission import FormSubmitter, SubmissionRejected, submit_ticket, build_task_payload
from workflow import TransitionRejected, TicketStatus, validate_transition, validate_comment

app = Flask(__name__)
app.config.from_object(Config)

logging.basicConfig(level=app.config['LOG_LEVEL'],
                    format='%(asctime)s %(name)s %(levelname)s %(message)s')
app.logger.setLevel(app.config['LOG_LEVEL'])

login_manager = LoginManager(app)
login_manager.login_view = 'login'
login_manager.login_message_category = 'info'

csrf = CSRFProtect(app)

app.jinja_env.filters['recurrence'] = describe


def get_api():
    """API client for this request, authenticated as the signed-in user."""
    if 'api' not in g:
        g.api = HelpdeskAPI(app.config['HELPDESK_API_URL'],
                            token=session.get('api_token'),
                            timeout=app.config['HELPDESK_API_TIMEOUT'])
    return g.api


@login_manager.user_loader
def load_user(user_id):
    data = session.get('user')
    if not data or str(data.get('id')) != user_id:
        return None
    if token_expired(session.get('api_token')):
        app.logger.info('API token for user %s expired', user_id)
        return None
    return User(**data)


def _end_session():
    logout_user()
    session.pop('api_token', None)
    session.pop('user', None)


def staff_required(f):
    @wraps(f)
    @login_required
    def decorated(*args, **kwargs):
        if not current_user.is_staff:
            abort(403)
        return f(*args, **kwargs)
    return decorated


def admin_required(f):
    @wraps(f)
    @login_required
    def decorated(*args, **kwargs):
        if not current_user.is_admin:
            abort(403)
        return f(*args, **kwargs)
    return decorated


@app.template_global()
def page_url(page):
    args = request.args.to_dict()
    args['page'] = page
    return url_for(request.endpoint, **dict(request.view_args or {}, **args))


# --- Error handling ---

@app.errorhandler(APIError)
def handle_api_error(e):
    if e.is_unauthorized:
        _end_session()
        flash('Your session has expired. Please log in again.', 'warning')
        return redirect(url_for('login', next=request.path))
    if e.is_not_found:
        return render_template('error.html', code=404, message='Not found'), 404
    if e.is_forbidden:
        return render_template('error.html', code=403, message='Forbidden'), 403
    app.logger.error('Help-desk API error on %s: %s', request.path, e.message)
    return render_template('error.html', code=502, message=e.message), 502


@app.errorhandler(403)
def forbidden(e):
    return render_template('error.html', code=403, message='Forbidden'), 403


@app.errorhandler(404)
def not_found(e):
    return render_template('error.html', code=404, message='Not found'), 404


@app.errorhandler(RequestEntityTooLarge)
def too_large(e):
    flash('Attachments are too large (16 MB maximum).', 'danger')
    return redirect(request.referrer or url_for('index'))


# --- Public pages ---

@app.route('/')
def index():
    return render_template('index.html')


@app.route('/login', methods=['GET', 'POST'])
def login():
    if current_user.is_authenticated:
        return redirect(url_for('dashboard'))
    form = LoginForm()
    if form.validate_on_submit():
        try:
            token, user = get_api().login(form.email.data.lower(), form.password.data)
        except APIError as e:
            if e.is_unauthorized or e.status_code == 400:
                flash('Invalid credentials', 'danger')
            else:
                flash(e.message, 'danger')
        else:
            session['api_token'] = token
            session['user'] = user.to_session()
            login_user(user)
            app.logger.info('User %s logged in', user.email)
            flash('Logged in', 'success')
            next_url = request.args.get('next')
            if next_url and next_url.startswith('/') and not next_url.startswith('//'):
                return redirect(next_url)
            return redirect(url_for('dashboard'))
    return render_template('login.html', form=form)


@app.route('/logout')
@login_required
def logout():
    _end_session()
    flash('Logged out', 'info')
    return redirect(url_for('index'))


@app.route('/register', methods=['GET', 'POST'])
def register():
    if current_user.is_authenticated:
        return redirect(url_for('dashboard'))
    form = RegisterForm()
    if form.validate_on_submit():
        try:
            get_api().register(form.name.data, form.email.data.lower(), form.password.data)
        except APIError as e:
            flash(e.message, 'danger')
        else:
            flash('Registered. Please log in.', 'success')
            return redirect(url_for('login'))
    return render_template('register.html', form=form)


@app.route('/forgot-password', methods=['GET', 'POST'])
def forgot_password():
    form = ForgotPasswordForm()
    if form.validate_on_submit():
        try:
            get_api().request_password_reset(form.email.data.lower())
        except APIError as e:
            flash(e.message, 'danger')
        else:
            flash('If that address is registered, a reset link is on its way.', 'info')
            return redirect(url_for('login'))
    return render_template('forgot_password.html', form=form)


@app.route('/reset-password/<token>', methods=['GET', 'POST'])
def reset_password(token):
    form = ResetPasswordForm()
    if form.validate_on_submit():
        try:
            get_api().reset_password(token, form.password.data)
        except APIError as e:
            flash(e.message, 'danger')
        else:
            flash('Password updated. Please log in.', 'success')
            return redirect(url_for('login'))
    return render_template('reset_password.html', form=form)


# --- Ticket submission ---

def _available_tags(api):
    try:
        return [t.name for t in api.fetch_tags()]
    except APIError as e:
        app.logger.warning('Could not load tags, using configured list: %s', e.message)
        return app.config['AVAILABLE_TAGS']


@app.route('/tickets/new', methods=['GET', 'POST'])
def ticket_new():
    if not app.config['ALLOW_PUBLIC_SUBMISSION'] and not current_user.is_authenticated:
        flash('Public ticket submission is currently disabled.', 'warning')
        return redirect(url_for('login', next=request.path))
    api = get_api()
    form = TicketForm()
    form.set_options(app.config['ISSUE_TYPES'], _available_tags(api))
    if request.method == 'GET' and current_user.is_authenticated:
        form.submitter_name.data = current_user.name
        form.submitter_email.data = current_user.email

    if form.validate_on_submit():
        draft = form.to_draft()
        if len(draft.files) > app.config['MAX_ATTACHMENTS']:
            form.attachments.errors.append(f"At most {app.config['MAX_ATTACHMENTS']} files.")
            return render_template('ticket_new.html', form=form)

        submitter = FormSubmitter(lambda d: submit_ticket(d, api))
        try:
            ticket = submitter.submit(draft)
        except SubmissionRejected as e:
            flash(e.message, 'danger')
        else:
            if submitter.completed:
                flash('Ticket submitted', 'success')
                return redirect(url_for('ticket_success', ticket_number=ticket.ticket_number))
            flash(submitter.error, 'danger')
    return render_template('ticket_new.html', form=form)


@app.route('/tickets/success/<int:ticket_number>')
def ticket_success(ticket_number):
    return render_template('ticket_success.html', ticket_number=ticket_number)


# --- Dashboard & ticket pages ---

@app.route('/dashboard')
@login_required
def dashboard():
    api = get_api()
    if current_user.is_staff:
        counts = {s: api.fetch_tickets(status=s, limit=1).total for s in TicketStatus.ALL}
        my_tasks = api.fetch_tasks(assigned_to='me', status='Open', limit=5).items
        return render_template('dashboard_staff.html', counts=counts, tasks=my_tasks)
    tickets = api.fetch_tickets(limit=10, sort_by='created_at', sort_order='desc').items
    return render_template('dashboard_user.html', tickets=tickets)


@app.route('/tickets')
@login_required
def ticket_list():
    filter_form = TicketFilterForm(formdata=request.args)
    page = request.args.get('page', 1, type=int)
    tickets = get_api().fetch_tickets(
        page=page,
        limit=app.config['TICKETS_PER_PAGE'],
        status=filter_form.status.data,
        urgency=filter_form.urgency.data,
        search=(filter_form.search.data or '').strip(),
        assigned_to=filter_form.assigned_to.data,
        sort_by=request.args.get('sort_by', 'created_at'),
        sort_order='asc' if request.args.get('sort_order') == 'asc' else 'desc',
    )
    return render_template('tickets.html', tickets=tickets, filter_form=filter_form, page=page)


def _render_ticket(ticket, status_form=None, comment_form=None, attachment_form=None):
    api = get_api()
    if current_user.is_staff and status_form is None:
        status_form = TicketStatusForm(formdata=None)
        status_form.set_assignees(api.fetch_assignable_users(), ticket.assignee)
        status_form.load(ticket)
    return render_template(
        'ticket_view.html',
        ticket=ticket,
        updates=ticket.visible_updates(current_user),
        status_form=status_form if current_user.is_staff else None,
        comment_form=comment_form or TicketCommentForm(formdata=None),
        attachment_form=(attachment_form or AttachmentForm(formdata=None)) if current_user.is_staff else None,
    )


@app.route('/tickets/<ticket_id>')
@login_required
def ticket_view(ticket_id):
    return _render_ticket(get_api().fetch_ticket(ticket_id))


@app.route('/tickets/<ticket_id>/status', methods=['POST'])
@staff_required
def ticket_status(ticket_id):
    api = get_api()
    ticket = api.fetch_ticket(ticket_id)
    form = TicketStatusForm()
    form.set_assignees(api.fetch_assignable_users(), ticket.assignee)
    if form.validate_on_submit():
        try:
            update = validate_transition(ticket, form.status.data, form.resolution_notes.data,
                                         form.assigned_to_id.data)
        except TransitionRejected as e:
            form.resolution_notes.errors.append(e.reason.capitalize() + '.')
            return _render_ticket(ticket, status_form=form), 400

        submitter = FormSubmitter(lambda p: api.update_ticket_status(ticket.id, p))
        updated = submitter.submit(update.to_payload())
        if submitter.completed:
            app.logger.info('Ticket #%s moved %s -> %s by %s', updated.ticket_number,
                            ticket.status, updated.status, current_user.email)
            flash(f'Ticket #{updated.ticket_number} updated: {updated.status}', 'success')
            return redirect(url_for('ticket_view', ticket_id=updated.id))
        flash(submitter.error, 'danger')
    return _render_ticket(ticket, status_form=form), 400


@app.route('/tickets/<ticket_id>/comments', methods=['POST'])
@login_required
def ticket_comment(ticket_id):
    api = get_api()
    form = TicketCommentForm()
    if form.validate_on_submit():
        try:
            payload = validate_comment(form.content.data, form.is_internal_note.data, current_user)
        except TransitionRejected as e:
            form.content.errors.append(e.reason.capitalize() + '.')
        else:
            submitter = FormSubmitter(lambda p: api.add_ticket_comment(ticket_id, p))
            submitter.submit(payload)
            if submitter.completed:
                flash('Comment added', 'success')
                return redirect(url_for('ticket_view', ticket_id=ticket_id))
            flash(submitter.error, 'danger')
    return _render_ticket(api.fetch_ticket(ticket_id), comment_form=form), 400


@app.route('/tickets/<ticket_id>/attachments', methods=['POST'])
@staff_required
def ticket_attachment_upload(ticket_id):
    api = get_api()
    form = AttachmentForm()
    if form.validate_on_submit():
        submitter = FormSubmitter(lambda f: api.upload_ticket_attachment(ticket_id, f))
        attachment = submitter.submit(form.file.data)
        if submitter.completed:
            flash(f'Uploaded {attachment.filename}', 'success')
            return redirect(url_for('ticket_view', ticket_id=ticket_id))
        flash(submitter.error, 'danger')
    return _render_ticket(api.fetch_ticket(ticket_id), attachment_form=form), 400


@app.route('/tickets/<ticket_id>/attachments/<attachment_id>/delete', methods=['POST'])
@staff_required
def ticket_attachment_delete(ticket_id, attachment_id):
    try:
        get_api().delete_ticket_attachment(ticket_id, attachment_id)
    except APIError as e:
        if e.is_unauthorized:
            raise
        flash(e.message, 'danger')
    else:
        flash('Attachment deleted', 'info')
    return redirect(url_for('ticket_view', ticket_id=ticket_id))


# --- Tasks ---

@app.route('/tasks')
@staff_required
def task_list():
    filter_form = TaskFilterForm(formdata=request.args)
    page = request.args.get('page', 1, type=int)
    tasks = get_api().fetch_tasks(page=page, limit=app.config['TICKETS_PER_PAGE'],
                                  status=filter_form.status.data,
                                  assigned_to=filter_form.assigned_to.data)
    return render_template('tasks.html', tasks=tasks, filter_form=filter_form, page=page)


def _save_task(form, task=None, ticket_id=None):
    api = get_api()
    try:
        payload = build_task_payload(form.to_draft(), ticket_id=ticket_id)
    except SubmissionRejected as e:
        flash(e.message, 'danger')
        return None
    if task is None:
        submitter = FormSubmitter(api.create_task)
    else:
        submitter = FormSubmitter(lambda p: api.update_task(task.id, p))
    saved = submitter.submit(payload)
    if not submitter.completed:
        flash(submitter.error, 'danger')
        return None
    return saved


@app.route('/tasks/new', methods=['GET', 'POST'])
@staff_required
def task_new():
    ticket_id = request.args.get('ticket_id') or None
    form = TaskForm()
    form.set_assignees(get_api().fetch_assignable_users())
    if form.validate_on_submit():
        saved = _save_task(form, ticket_id=ticket_id)
        if saved:
            flash(f'Task #{saved.task_number} created', 'success')
            return redirect(url_for('task_view', task_id=saved.id))
    return render_template('task_edit.html', form=form, task=None, ticket_id=ticket_id, new=True)


@app.route('/tasks/<task_id>')
@staff_required
def task_view(task_id):
    return render_template('task_view.html', task=get_api().fetch_task(task_id))


@app.route('/tasks/<task_id>/edit', methods=['GET', 'POST'])
@staff_required
def task_edit(task_id):
    api = get_api()
    task = api.fetch_task(task_id)
    form = TaskForm()
    form.set_assignees(api.fetch_assignable_users(), task.assignee)
    if request.method == 'GET':
        form.load(task)
    if form.validate_on_submit():
        saved = _save_task(form, task=task, ticket_id=task.ticket_id)
        if saved:
            flash('Task updated', 'success')
            return redirect(url_for('task_view', task_id=saved.id))
    return render_template('task_edit.html', form=form, task=task, ticket_id=task.ticket_id, new=False)


@app.route('/tasks/<task_id>/delete', methods=['POST'])
@staff_required
def task_delete(task_id):
    try:
        get_api().delete_task(task_id)
    except APIError as e:
        if e.is_unauthorized:
            raise
        flash(e.message, 'danger')
        return redirect(url_for('task_view', task_id=task_id))
    flash('Task deleted', 'info')
    return redirect(url_for('task_list'))


# --- Users (admin only) ---

@app.route('/users')
@admin_required
def user_list():
    page = request.args.get('page', 1, type=int)
    users = get_api().fetch_users(page=page, limit=app.config['TICKETS_PER_PAGE'])
    return render_template('users.html', users=users, page=page)


@app.route('/users/new', methods=['GET', 'POST'])
@admin_required
def user_new():
    form = UserForm()
    if form.validate_on_submit():
        payload = {
            'name': form.name.data,
            'email': form.email.data.lower(),
            'role': form.role.data,
            'password': form.password.data,
        }
        submitter = FormSubmitter(get_api().create_user)
        user = submitter.submit(payload)
        if submitter.completed:
            flash(f'User {user.email} created', 'success')
            return redirect(url_for('user_list'))
        flash(submitter.error, 'danger')
    return render_template('user_edit.html', form=form, user=None)


@app.route('/users/<user_id>/edit', methods=['GET', 'POST'])
@admin_required
def user_edit(user_id):
    api = get_api()
    user = api.fetch_user(user_id)
    form = UserEditForm()
    if request.method == 'GET':
        form.load(user)
    if form.validate_on_submit():
        payload = {
            'name': form.name.data,
            'email': form.email.data.lower(),
            'role': form.role.data,
            'password': form.password.data,
        }
        submitter = FormSubmitter(lambda p: api.update_user(user.id, p))
        submitter.submit(payload)
        if submitter.completed:
            app.logger.info('User %s updated by %s', user.id, current_user.email)
            flash('User updated', 'success')
            return redirect(url_for('user_list'))
        flash(submitter.error, 'danger')
    return render_template('user_edit.html', form=form, user=user)


@app.route('/users/<user_id>/delete', methods=['POST'])
@admin_required
def user_delete(user_id):
    if user_id == current_user.id:
        flash('You cannot delete your own account.', 'danger')
        return redirect(url_for('user_list'))
    try:
        get_api().delete_user(user_id)
    except APIError as e:
        if e.is_unauthorized:
            raise
        flash(e.message, 'danger')
    else:
        app.logger.info('User %s deleted by %s', user_id, current_user.email)
        flash('User deleted', 'info')
    return redirect(url_for('user_list'))


if __name__ == '__main__':
    app.run(host='0.0.0.0', debug=True)
