import logging

from django.contrib import messages
from django.http import HttpResponseRedirect, JsonResponse

from .exceptions import error_response, internal_error_payload

logger = logging.getLogger(__name__)


class DomainErrorMiddleware:
    """Render domain errors raised by plain Django views.

    DRF views never reach here (their handler answers first).  Requests
    that expect JSON get the API envelope; browser form posts are sent
    back to the referring page with the message flashed and the field
    errors kept in the session under ``form_errors``.
    """

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        return self.get_response(request)

    @staticmethod
    def expects_json(request) -> bool:
        accept = request.headers.get('Accept', '')
        return (
            'application/json' in accept
            or (request.path or '').startswith('/api/')
            or request.headers.get('X-Requested-With') == 'XMLHttpRequest'
        )

    def process_exception(self, request, exception):
        mapped = error_response(exception)
        if self.expects_json(request):
            if mapped is None:
                logger.exception('Unhandled error on %s', request.path, exc_info=exception)
                return JsonResponse(internal_error_payload(exception), status=500)
            status, payload = mapped
            return JsonResponse(payload, status=status)

        # HTML: only business rule / validation failures bounce back to the form
        if mapped is None or mapped[0] == 404:
            return None
        _, payload = mapped
        error = payload['error']
        messages.error(request, error['message'])
        details = error.get('details') or {}
        if hasattr(request, 'session'):
            request.session['form_errors'] = {
                k: v for k, v in details.items() if isinstance(v, (list, str))
            }
        return HttpResponseRedirect(request.META.get('HTTP_REFERER') or '/')
