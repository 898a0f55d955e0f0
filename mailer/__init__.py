"""mailer/ -- Outbound transactional email (verification and password reset links)."""
