from collections import namedtuple

ListQuery = namedtuple("ListQuery", ["filter", "limit"])


def _limit(params):
    if params.get("limit") is None:
        return None
    # "2.5" validates as a number; the store wants a row count
    return int(params["limit"])


def task_query(params):
    """
    params: cleaned list-query values (only keys the client sent)
    filters compose conjunctively, e.g. ?fieldID=..&isDone=false
    """
    criteria = {}
    if "text" in params:
        criteria["text"] = params["text"]
    if "fieldID" in params:
        criteria["fieldIDs"] = params["fieldID"]
    if "isDone" in params:
        criteria["isDone"] = params["isDone"]
    return ListQuery(criteria, _limit(params))


def field_query(params):
    # text/priority/isDone are accepted by the validator but not applied here
    return ListQuery({}, _limit(params))


def referencing_tasks(field_id):
    return {"fieldIDs": field_id}
