#Expose the dispatch records. The Dispatcher itself lives in dispatch.dispatcher;
#import it from there (it depends on storage, which depends on these models).

from .models import Assignment, AssignmentStatus

__all__ = [
    "Assignment",
    "AssignmentStatus",
]
