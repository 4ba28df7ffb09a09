from datetime import date
from flask_wtf import FlaskForm
from flask_wtf.file import FileField, FileRequired
from wtforms import (StringField, PasswordField, SubmitField, SelectField, SelectMultipleField,
                     TextAreaField, BooleanField, IntegerField, MultipleFileField, DateField)
from wtforms.validators import DataRequired, Email, Length, EqualTo, NumberRange, Optional
from wtforms.widgets import ListWidget, CheckboxInput

from recurrence import RecurrenceSpec, FREQUENCY_CHOICES, WEEKDAY_CHOICES, normalize
from submission import TicketDraft, TaskDraft
from workflow import TicketStatus, TicketUrgency, TaskStatus, Role


def _choices(values):
    return [(v, v) for v in values]


def _assignee_choices(users, current=None):
    choices = [('', 'Unassigned')] + [(u.id, u.name) for u in users]
    # keep the current assignee selectable even when the staff list no longer has them
    if current is not None and current.id not in {c[0] for c in choices}:
        choices.append((current.id, current.name or current.email or current.id))
    return choices


class MultiCheckboxField(SelectMultipleField):
    widget = ListWidget(prefix_label=False)
    option_widget = CheckboxInput()


class LoginForm(FlaskForm):
    email = StringField('Email', validators=[DataRequired(), Email()])
    password = PasswordField('Password', validators=[DataRequired()])
    submit = SubmitField('Login')


class RegisterForm(FlaskForm):
    name = StringField('Full name', validators=[DataRequired(), Length(max=120)])
    email = StringField('Email', validators=[DataRequired(), Email(), Length(max=120)])
    password = PasswordField('Password', validators=[DataRequired(), Length(min=6)])
    password2 = PasswordField('Repeat Password',
                              validators=[DataRequired(), EqualTo('password', message='Passwords do not match.')])
    submit = SubmitField('Register')


class ForgotPasswordForm(FlaskForm):
    email = StringField('Email', validators=[DataRequired(), Email()])
    submit = SubmitField('Send reset link')


class ResetPasswordForm(FlaskForm):
    password = PasswordField('New password', validators=[DataRequired(), Length(min=6)])
    password2 = PasswordField('Repeat password',
                              validators=[DataRequired(), EqualTo('password', message='Passwords do not match.')])
    submit = SubmitField('Reset password')


class TicketForm(FlaskForm):
    submitter_name = StringField('Your name', validators=[DataRequired(), Length(max=120)])
    submitter_email = StringField('Your email', validators=[DataRequired(), Email(), Length(max=120)])
    subject = StringField('Subject', validators=[DataRequired(), Length(max=200)])
    description = TextAreaField('Description', validators=[DataRequired(), Length(max=5000)])
    urgency = SelectField('Urgency', choices=_choices(TicketUrgency.ALL), default=TicketUrgency.MEDIUM,
                          validators=[DataRequired()])
    issue_type = SelectField('Issue type', choices=[], validators=[Optional()])
    tags = SelectMultipleField('Tags', choices=[], validators=[Optional()])
    attachments = MultipleFileField('Attachments')
    submit = SubmitField('Submit Ticket')

    def set_options(self, issue_types, tags):
        self.issue_type.choices = [('', '-- Select --')] + _choices(issue_types)
        self.tags.choices = _choices(tags)

    def to_draft(self):
        return TicketDraft(
            submitter_name=self.submitter_name.data or '',
            submitter_email=self.submitter_email.data or '',
            subject=self.subject.data or '',
            description=self.description.data or '',
            urgency=self.urgency.data,
            issue_type=self.issue_type.data or '',
            tags=list(self.tags.data or []),
            files=[f for f in (self.attachments.data or []) if getattr(f, 'filename', None)],
        )


class TicketStatusForm(FlaskForm):
    status = SelectField('Status', choices=_choices(TicketStatus.ALL), validators=[DataRequired()])
    assigned_to_id = SelectField('Assigned to', choices=[('', 'Unassigned')])
    resolution_notes = TextAreaField('Resolution notes', validators=[Length(max=5000)])
    submit = SubmitField('Update Ticket')

    def set_assignees(self, users, current=None):
        self.assigned_to_id.choices = _assignee_choices(users, current)

    def load(self, ticket):
        self.status.data = ticket.status
        self.assigned_to_id.data = ticket.assigned_to_id
        self.resolution_notes.data = ticket.resolution_notes or ''


class TicketCommentForm(FlaskForm):
    content = TextAreaField('Comment', validators=[DataRequired(), Length(max=5000)])
    is_internal_note = BooleanField('Internal note (staff only)')
    submit = SubmitField('Add Comment')


class AttachmentForm(FlaskForm):
    file = FileField('File', validators=[FileRequired()])
    submit = SubmitField('Upload')


class TaskForm(FlaskForm):
    title = StringField('Title', validators=[DataRequired(), Length(max=200)])
    description = TextAreaField('Description', validators=[Length(max=5000)])
    status = SelectField('Status', choices=_choices(TaskStatus.ALL), default=TaskStatus.OPEN)
    due_date = DateField('Due date', format='%Y-%m-%d', validators=[Optional()])
    assigned_to_id = SelectField('Assigned to', choices=[('', 'Unassigned')])

    frequency = SelectField('Repeats', choices=FREQUENCY_CHOICES, default='')
    interval = IntegerField('Every', default=1, validators=[Optional(), NumberRange(min=1)])
    days_of_week = MultiCheckboxField('On days', choices=WEEKDAY_CHOICES, validators=[Optional()])
    day_of_month = IntegerField('Day of month', default=1, validators=[Optional(), NumberRange(min=1, max=31)])
    submit = SubmitField('Save Task')

    def set_assignees(self, users, current=None):
        self.assigned_to_id.choices = _assignee_choices(users, current)

    def recurrence_spec(self):
        spec = RecurrenceSpec(
            frequency=self.frequency.data or '',
            interval=self.interval.data or 1,
            days_of_week=list(self.days_of_week.data or []),
            day_of_month=self.day_of_month.data or 1,
        )
        return normalize(spec)

    def load(self, task):
        self.title.data = task.title
        self.description.data = task.description
        self.status.data = task.status
        self.due_date.data = None
        if task.due_date_value:
            try:
                self.due_date.data = date.fromisoformat(task.due_date_value)
            except ValueError:
                self.due_date.data = None
        self.assigned_to_id.data = task.assignee.id if task.assignee else ''
        spec = task.recurrence or RecurrenceSpec()
        self.frequency.data = spec.frequency
        self.interval.data = spec.interval
        self.days_of_week.data = list(spec.days_of_week)
        self.day_of_month.data = spec.day_of_month

    def to_draft(self):
        return TaskDraft(
            title=self.title.data or '',
            description=self.description.data or '',
            status=self.status.data,
            due_date=self.due_date.data.isoformat() if self.due_date.data else '',
            assigned_to_id=self.assigned_to_id.data or '',
            recurrence=self.recurrence_spec(),
        )


class UserForm(FlaskForm):
    name = StringField('Full name', validators=[DataRequired(), Length(max=120)])
    email = StringField('Email', validators=[DataRequired(), Email(), Length(max=120)])
    role = SelectField('Role', choices=_choices(Role.ALL), default=Role.USER)
    password = PasswordField('Password', validators=[DataRequired(), Length(min=6)])
    password2 = PasswordField('Repeat Password',
                              validators=[DataRequired(), EqualTo('password', message='Passwords do not match.')])
    submit = SubmitField('Create User')


class UserEditForm(FlaskForm):
    name = StringField('Full name', validators=[DataRequired(), Length(max=120)])
    email = StringField('Email', validators=[DataRequired(), Email(), Length(max=120)])
    role = SelectField('Role', choices=_choices(Role.ALL))
    password = PasswordField('New password', validators=[Optional(), Length(min=6)])
    password2 = PasswordField('Repeat new password',
                              validators=[EqualTo('password', message='Passwords do not match.')])
    submit = SubmitField('Save User')

    def load(self, user):
        self.name.data = user.name
        self.email.data = user.email
        self.role.data = user.role


ASSIGNEE_FILTER_CHOICES = [('', 'All assignees'), ('me', 'Assigned to me'), ('unassigned', 'Unassigned')]


class TicketFilterForm(FlaskForm):
    class Meta:
        csrf = False

    status = SelectField('Status', choices=[('', 'All Statuses')] + _choices(TicketStatus.ALL),
                         validators=[Optional()])
    urgency = SelectField('Urgency', choices=[('', 'All Urgencies')] + _choices(TicketUrgency.ALL),
                          validators=[Optional()])
    search = StringField('Search', validators=[Optional()])
    assigned_to = SelectField('Assignee', choices=ASSIGNEE_FILTER_CHOICES, validators=[Optional()])
    submit = SubmitField('Filter')


class TaskFilterForm(FlaskForm):
    class Meta:
        csrf = False

    status = SelectField('Status', choices=[('', 'All Statuses')] + _choices(TaskStatus.ALL),
                         validators=[Optional()])
    assigned_to = SelectField('Assignee', choices=ASSIGNEE_FILTER_CHOICES, validators=[Optional()])
    submit = SubmitField('Filter')
