"""Bundle-adjustment residuals."""
