from pages.home_page import HomePage
from pages.login_page import LoginPage
from pages.welcome_page import WelcomePage

__all__ = ["WelcomePage", "LoginPage", "HomePage"]
