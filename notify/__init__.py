"""Operator error notifications"""
from notify.mailer import EmailNotifier

__all__ = ['EmailNotifier']
