from django.contrib import admin
from django.urls import path, include

urlpatterns = [
    # Admin site
    path('admin/', admin.site.urls),

    # LTI URLs
    path('lti/', include('lti.urls')),
]
