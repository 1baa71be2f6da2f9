import logging

from django.http import HttpResponse, HttpResponseNotAllowed, HttpResponseRedirect
from django.views.decorators.csrf import csrf_exempt

from .config import get_provider_config
from .provider import ToolProvider
from .results import Continue, Redirect, RenderOutput

logger = logging.getLogger(__name__)

SESSION_KEY = 'lti_launch'


def outcome_response(outcome):
    """Turn a launch outcome into an HTTP response."""
    if isinstance(outcome, Redirect):
        return HttpResponseRedirect(outcome.url)
    if isinstance(outcome, RenderOutput):
        return HttpResponse(outcome.content, status=outcome.status)
    if isinstance(outcome, Continue):
        return HttpResponse(status=204)
    raise TypeError(f"Cannot respond with {type(outcome).__name__}")


# ----------------------
# Main Launch Endpoint
# ----------------------

@csrf_exempt
def lti_launch(request):
    """LTI 1.1 basic launch endpoint"""
    if request.method != 'POST':
        return HttpResponseNotAllowed(['POST'])

    logger.info(f"LTI launch request received for consumer '{request.POST.get('oauth_consumer_key', '')}'")

    provider = ToolProvider.from_settings()
    outcome = provider.handle(
        request.POST.dict(),
        request.build_absolute_uri(),
        method=request.method,
    )

    result = provider.last_result
    if result is not None and result.ok:
        request.session[SESSION_KEY] = result.as_session_data(get_provider_config()['ID_SCOPE'])
        request.session['is_lti_launch'] = True
    else:
        request.session.pop(SESSION_KEY, None)

    return outcome_response(outcome)
