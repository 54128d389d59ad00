# votequeue/intake/routes.py

# Ballot page: renders the options and accepts the `vote` form field

from flask import Blueprint, current_app, make_response, render_template, request

from votequeue.errors import InvalidChoice, QueueUnavailable, SubmissionFault

bp = Blueprint('intake', __name__, template_folder='templates')

VOTER_COOKIE = 'voter_id'


def _intake():
    return current_app.extensions['vote_intake']


def _vote_rate_limit():
    return current_app.config['VOTE_RATE_LIMIT']


def limit_votes(app, limiter):
    """Apply the POST rate limit of `limiter` to the ballot view of `app`."""
    view = app.view_functions['intake.ballot']
    app.view_functions['intake.ballot'] = limiter.limit(_vote_rate_limit, methods=['POST'])(view)


@bp.route('/', methods=['GET', 'POST'])
def ballot():
    intake = _intake()
    voter_id = intake.validator.voter_id_or_new(request.cookies.get(VOTER_COOKIE))
    vote = None
    error = None
    status = 200

    if request.method == 'POST':
        choice = request.form.get('vote')
        try:
            submission = intake.submit(choice, voter_id=voter_id)
            vote = submission.choice
        except InvalidChoice:
            current_app.logger.warning(f"Rejected invalid choice {choice!r}")
            error = 'Please pick one of the options.'
            status = 400
        except QueueUnavailable as e:
            current_app.logger.error(f"Queue unavailable: {e}")
            error = 'Your vote could not be recorded, please try again.'
            status = 503
        except SubmissionFault as e:
            current_app.logger.error(str(e))
            error = 'Something went wrong, please try again.'
            status = 500

    resp = make_response(render_template(
        'index.html',
        options=intake.choices,
        hostname=current_app.config['HOSTNAME'],
        vote=vote,
        error=error,
    ), status)
    resp.set_cookie(VOTER_COOKIE, voter_id)
    return resp
