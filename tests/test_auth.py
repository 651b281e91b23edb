"""Tests for brewnet.auth.SessionManager - the auth state machine."""

import pytest

from brewnet.auth import InvalidAuthTransition
from brewnet.models.enums import AuthStatus
from brewnet.models.user import Session


def _session(name="Ada"):
    return Session(email=f"{name.lower()}@example.com", name=name)


class TestInitialState:

    def test_starts_loading_without_user(self, session_manager):
        assert session_manager.auth_state.status == AuthStatus.LOADING
        assert session_manager.current_user is None
        assert session_manager.is_authenticated is False

    def test_get_current_user_raises_when_nobody_logged_in(self, session_manager):
        with pytest.raises(RuntimeError, match="Login required"):
            session_manager.get_current_user()


class TestTransitions:

    def test_loading_to_unauthenticated(self, session_manager):
        session_manager.mark_unauthenticated()
        assert session_manager.auth_state.status == AuthStatus.UNAUTHENTICATED

    def test_mark_unauthenticated_twice_is_a_no_op(self, session_manager):
        session_manager.mark_unauthenticated()
        session_manager.mark_unauthenticated()
        assert session_manager.auth_state.status == AuthStatus.UNAUTHENTICATED

    def test_unauthenticated_to_authenticated(self, session_manager):
        session_manager.mark_unauthenticated()
        user = _session()
        session_manager.set_current_user(user)

        assert session_manager.auth_state.status == AuthStatus.AUTHENTICATED
        assert session_manager.auth_state.session == user
        assert session_manager.get_current_user() == user

    def test_replacing_session_keeps_status(self, session_manager):
        first = _session("Ada")
        session_manager.set_current_user(first)
        second = first.model_copy(update={"profile_setup_completed": True})
        session_manager.set_current_user(second)

        assert session_manager.auth_state.status == AuthStatus.AUTHENTICATED
        assert session_manager.current_user.profile_setup_completed is True
        assert session_manager.current_user.id == first.id

    def test_clear_moves_to_unauthenticated(self, session_manager):
        session_manager.set_current_user(_session())
        session_manager.clear()

        assert session_manager.auth_state.status == AuthStatus.UNAUTHENTICATED
        assert session_manager.current_user is None

    def test_mark_unauthenticated_after_login_is_rejected(self, session_manager):
        """Only logout (clear) may leave the authenticated state."""
        user = _session()
        session_manager.set_current_user(user)

        with pytest.raises(InvalidAuthTransition):
            session_manager.mark_unauthenticated()

        assert session_manager.auth_state.status == AuthStatus.AUTHENTICATED
        assert session_manager.current_user == user


class TestSubscribe:

    def test_listener_receives_each_new_state(self, session_manager):
        seen = []
        session_manager.subscribe(lambda state: seen.append(state.status))

        session_manager.mark_unauthenticated()
        session_manager.set_current_user(_session())
        session_manager.clear()

        assert seen == [
            AuthStatus.UNAUTHENTICATED,
            AuthStatus.AUTHENTICATED,
            AuthStatus.UNAUTHENTICATED,
        ]

    def test_unsubscribe_stops_delivery(self, session_manager):
        seen = []
        unsubscribe = session_manager.subscribe(seen.append)
        unsubscribe()

        session_manager.mark_unauthenticated()
        assert seen == []

    def test_failing_listener_does_not_break_mutation(self, session_manager):
        seen = []

        def _boom(state):
            raise ValueError("listener bug")

        session_manager.subscribe(_boom)
        session_manager.subscribe(seen.append)
        session_manager.set_current_user(_session())

        assert session_manager.is_authenticated is True
        assert len(seen) == 1
