"""Third-party integrations: email (SES), Google OAuth, Sentry."""
