"""Raw ``LIKE`` look-ups for order search.

Django's ``contains``/``icontains`` escape ``%`` and ``_`` in the operand.
Order search keeps them as wildcards, so ``like`` and ``ilike`` pass the
right-hand side straight to the database.  The caller adds the surrounding
``%``.

``ilike`` compares ``UPPER(lhs) LIKE UPPER(rhs)`` which behaves the same on
SQLite and PostgreSQL.
"""

from __future__ import annotations

from django.db.models import CharField, Lookup, TextField


class Like(Lookup):
    lookup_name = "like"

    def as_sql(self, compiler, connection):
        lhs, lhs_params = self.process_lhs(compiler, connection)
        rhs, rhs_params = self.process_rhs(compiler, connection)
        return f"{lhs} LIKE {rhs}", [*lhs_params, *rhs_params]


class ILike(Lookup):
    lookup_name = "ilike"

    def as_sql(self, compiler, connection):
        lhs, lhs_params = self.process_lhs(compiler, connection)
        rhs, rhs_params = self.process_rhs(compiler, connection)
        return f"UPPER({lhs}) LIKE UPPER({rhs})", [*lhs_params, *rhs_params]


def register_lookups() -> None:
    for field_class in (CharField, TextField):
        field_class.register_lookup(Like)
        field_class.register_lookup(ILike)
