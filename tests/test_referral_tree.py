import pytest
from sqlalchemy.exc import OperationalError

from extensions import db
from models import ReferralEdge, User
from referral.errors import StorageFailure
from referral.tree import ReferralTreeBuilder


def _edges(user):
    return [
        (edge.level, edge.ancestor_id)
        for edge in ReferralEdge.query.filter_by(descendant_id=user.id).order_by(ReferralEdge.level)
    ]


def _bare_user(phone, referred_by=None):
    user = User(full_name=f"User {phone}", phone=phone, referred_by=referred_by)
    db.session.add(user)
    db.session.commit()
    user.referral_code = ReferralTreeBuilder.generate_referral_code()
    db.session.commit()
    return user


def test_registration_assigns_code_and_wallet(make_user):
    user = make_user()
    assert user.referral_code and len(user.referral_code) == 8
    assert user.referral_code == user.referral_code.upper()
    assert user.referral_code.isalnum()
    assert user.wallet is not None


def test_direct_referral_creates_level_one_edge(make_user):
    a = make_user()
    b = make_user(referrer=a)
    assert _edges(b) == [(1, a.id)]
    assert b.referred_by == a.id


def test_referrer_chain_is_shifted_by_one_level(chain):
    a, b, c, d = chain(4)
    assert _edges(d) == [(1, c.id), (2, b.id), (3, a.id)]


def test_chain_is_truncated_at_max_depth(app, chain):
    users = chain(13)
    deepest = users[-1]
    levels = [level for level, _ in _edges(deepest)]
    assert levels == list(range(1, app.config["REFERRAL_MAX_DEPTH"] + 1))
    # closest referrer first, the root is beyond reach
    assert _edges(deepest)[0][1] == users[-2].id
    assert users[0].id not in [ancestor for _, ancestor in _edges(deepest)]


def test_depth_of_one_keeps_only_direct_referrers(app, chain):
    app.config["REFERRAL_MAX_DEPTH"] = 1
    users = chain(4)
    assert _edges(users[-1]) == [(1, users[-2].id)]
    assert ReferralTreeBuilder.get_ancestor_edges(users[-1].id, 0) == []


def test_deleting_an_ancestor_does_not_cascade_into_chains():
    ancestor_fk = next(iter(ReferralEdge.__table__.c.ancestor_id.foreign_keys))
    descendant_fk = next(iter(ReferralEdge.__table__.c.descendant_id.foreign_keys))
    assert ancestor_fk.ondelete == "RESTRICT"
    assert descendant_fk.ondelete == "CASCADE"


def test_build_twice_is_a_noop(chain):
    a, b, c = chain(3)
    before = _edges(c)
    assert ReferralTreeBuilder.build_ancestry(c, a.referral_code) == 0
    assert _edges(c) == before


def test_missing_or_unknown_code_creates_nothing(make_user):
    user = make_user()
    assert ReferralTreeBuilder.build_ancestry(user, None) == 0
    assert ReferralTreeBuilder.build_ancestry(user, "NOPE1234") == 0
    assert _edges(user) == []
    assert user.referred_by is None


def test_code_lookup_is_case_insensitive(make_user):
    a = make_user()
    b = make_user()
    assert ReferralTreeBuilder.build_ancestry(b, f"  {a.referral_code.lower()} ") == 1
    assert _edges(b) == [(1, a.id)]


def test_self_referral_is_ignored(make_user):
    user = make_user()
    assert ReferralTreeBuilder.build_ancestry(user, user.referral_code) == 0
    assert user.referred_by is None


def test_cycle_is_refused(make_user):
    a = make_user()
    b = make_user(referrer=a)
    # a has no ancestors yet, but b already descends from a
    assert ReferralTreeBuilder.build_ancestry(a, b.referral_code) == 0
    assert _edges(a) == []


def test_referred_by_wins_over_supplied_code(app):
    root = _bare_user("0811000001")
    other = _bare_user("0811000002")
    user = _bare_user("0811000003", referred_by=root.id)

    assert ReferralTreeBuilder.build_ancestry(user, other.referral_code) == 1
    assert _edges(user) == [(1, root.id)]
    assert user.referred_by == root.id


def test_build_ancestry_accepts_a_user_id(make_user):
    a = make_user()
    b = make_user()
    b.referred_by = a.id
    db.session.commit()
    assert ReferralTreeBuilder.build_ancestry(b.id) == 1


def test_concurrent_build_is_treated_as_noop(make_user, monkeypatch):
    a = make_user()
    b = make_user(referrer=a)
    # Pretend another writer inserted the edges after our existence check
    monkeypatch.setattr(ReferralTreeBuilder, "has_edges", staticmethod(lambda user_id: False))
    assert ReferralTreeBuilder.build_ancestry(b, a.referral_code) == 0
    assert ReferralEdge.query.filter_by(descendant_id=b.id).count() == 1


def test_storage_error_raises_retryable_failure(make_user, monkeypatch):
    a = make_user()
    b = make_user()

    def broken_commit():
        raise OperationalError("INSERT INTO referral_edges", {}, Exception("disk I/O error"))

    monkeypatch.setattr(db.session, "commit", broken_commit)
    with pytest.raises(StorageFailure) as exc_info:
        ReferralTreeBuilder.build_ancestry(b, a.referral_code)
    assert exc_info.value.retryable
    monkeypatch.undo()

    assert _edges(b) == []
    # the out-of-band retry succeeds
    assert ReferralTreeBuilder.build_ancestry(b, a.referral_code) == 1


def test_registration_survives_storage_failure(make_user, monkeypatch):
    a = make_user()
    user = User(full_name="Late Joiner", phone="0899999999")
    db.session.add(user)
    db.session.commit()
    ReferralTreeBuilder.on_registration(user)

    def broken_build(new_user, referrer_code=None):
        raise StorageFailure("database unavailable")

    monkeypatch.setattr(ReferralTreeBuilder, "build_ancestry", staticmethod(broken_build))
    assert ReferralTreeBuilder.on_registration(user, a.referral_code) == 0


def test_ancestor_and_descendant_reads(chain):
    a, b, c = chain(3)
    assert [row["userId"] for row in ReferralTreeBuilder.get_ancestors(c.id)] == [b.id, a.id]

    downline = ReferralTreeBuilder.get_descendants(a.id)
    assert [(row["level"], row["userId"]) for row in downline] == [(1, b.id), (2, c.id)]
    assert [row["userId"] for row in ReferralTreeBuilder.get_descendants(a.id, level=2)] == [c.id]
    assert ReferralTreeBuilder.is_descendant(a.id, c.id)
    assert not ReferralTreeBuilder.is_descendant(c.id, a.id)
