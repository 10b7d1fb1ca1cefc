import functools
import inspect
import logging
from utils.exceptions import ElectionMLException

def _operation_context(func, operation_name: str, args, kwargs) -> str:
    """'Operation' or 'Operation [run <id>]' when the engine call carries a run_id."""
    try:
        bound = inspect.signature(func).bind_partial(*args, **kwargs)
    except TypeError:
        return operation_name
    run_id = bound.arguments.get('run_id')
    return f"{operation_name} [run {run_id}]" if run_id else operation_name

def handle_engine_errors(operation_name: str):
    """
    Decorator for engine ``execute`` methods.

    Pipeline exceptions are logged with the stage and run and re-raised
    unchanged; anything else is logged with its traceback and wrapped in
    ``ElectionMLException``.
    """
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except ElectionMLException as e:
                logger = args[0].logger if args and hasattr(args[0], 'logger') else logging.getLogger()
                context = _operation_context(func, operation_name, args, kwargs)
                logger.error(f"{context} aborted: {type(e).__name__}: {e}")
                raise
            except Exception as e:
                logger = args[0].logger if args and hasattr(args[0], 'logger') else logging.getLogger()
                context = _operation_context(func, operation_name, args, kwargs)
                logger.error(f"{context} failed: {e}", exc_info=True)
                raise ElectionMLException(f"{context} failed: {str(e)}") from e
        return wrapper
    return decorator
