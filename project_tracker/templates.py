# -------------------------------------------------------------
# TEMPLATES – Bootstrap pages rendered with render_template_string.
# Shared pieces (head, nav, flash area, footer) are concatenated
# into each page. Inline scripts carry the per-request CSP nonce.
# -------------------------------------------------------------
PAGE_HEAD = """
<!doctype html>
<html lang="en">
  <head>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1">
    <title>{{ page_title }} · Project Manager</title>
    <link href="https://cdn.jsdelivr.net/npm/bootstrap@5.3.2/dist/css/bootstrap.min.css" rel="stylesheet">
    <style>
      .stat-card { cursor: pointer; }
      .stat-card.active { outline: 2px solid var(--bs-primary); }
    </style>
  </head>
  <body class="bg-light">
"""

BASE_NAV = """
<nav class="navbar navbar-expand-lg navbar-dark bg-primary mb-4">
  <div class="container-fluid">
    <a class="navbar-brand" href="{{ url_for('index') }}">Project Manager</a>
    <div class="navbar-nav me-auto">
      <a class="nav-link {% if active=='home' %}active{% endif %}" href="{{ url_for('index') }}">Home</a>
      <a class="nav-link {% if active=='search' %}active{% endif %}" href="{{ url_for('search') }}">All Projects</a>
      <a class="nav-link {% if active=='about' %}active{% endif %}" href="{{ url_for('about') }}">About</a>
      <a class="nav-link {% if active=='contact' %}active{% endif %}" href="{{ url_for('contact') }}">Contact</a>
      {% if current_user %}
        <a class="nav-link {% if active=='dashboard' %}active{% endif %}" href="{{ url_for('dashboard') }}">Dashboard</a>
        <a class="nav-link {% if active=='add-project' %}active{% endif %}" href="{{ url_for('add_project') }}">Add Project</a>
      {% endif %}
    </div>
    <form class="d-flex me-3" method="get" action="{{ url_for('search') }}">
      <input class="form-control form-control-sm" type="search" name="query" placeholder="Search projects">
    </form>
    <div class="navbar-nav">
      {% if current_user %}
        <span class="navbar-text me-2">{{ current_user['username'] }}</span>
        <form method="post" action="{{ url_for('logout') }}">
          <input type="hidden" name="csrf_token" value="{{ csrf_token() }}">
          <button class="btn btn-sm btn-outline-light">Log out</button>
        </form>
      {% else %}
        <a class="nav-link {% if active=='login' %}active{% endif %}" href="{{ url_for('login') }}">Log in</a>
        <a class="nav-link {% if active=='register' %}active{% endif %}" href="{{ url_for('register') }}">Register</a>
      {% endif %}
    </div>
  </div>
</nav>
"""

FLASHES = """
      {% with messages = get_flashed_messages(with_categories=true) %}
        {% if messages %}
          {% for category, m in messages %}
            <div class="alert alert-{{ 'info' if category == 'message' else category }}">{{ m }}</div>
          {% endfor %}
        {% endif %}
      {% endwith %}
      {% if errors %}
        <div class="alert alert-danger">
          <ul class="mb-0">
            {% for e in errors %}<li>{{ e }}</li>{% endfor %}
          </ul>
        </div>
      {% endif %}
"""

# Client-side convenience only: the server validates everything again.
COMMON_SCRIPT = """
    <script nonce="{{ csp_nonce() }}">
      document.addEventListener('DOMContentLoaded', function() {
        document.querySelectorAll('form.needs-validation').forEach(function(form) {
          form.addEventListener('submit', function(event) {
            var start = form.querySelector('#start_date');
            var end = form.querySelector('#end_date');
            if (start && end && start.value && end.value && end.value <= start.value) {
              event.preventDefault();
              alert('End date must be after start date.');
              return;
            }
            var pw = form.querySelector('#password');
            var confirmPw = form.querySelector('#confirm_password');
            if (pw && confirmPw && pw.value !== confirmPw.value) {
              event.preventDefault();
              alert('Passwords do not match.');
              return;
            }
            if (!form.checkValidity()) {
              event.preventDefault();
              event.stopPropagation();
            }
            form.classList.add('was-validated');
          });
        });

        var description = document.getElementById('short_description');
        var counter = document.getElementById('description-counter');
        if (description && counter) {
          var update = function() {
            var remaining = 500 - description.value.length;
            counter.textContent = remaining + ' characters remaining';
            counter.classList.toggle('text-warning', remaining >= 0 && remaining < 50);
            counter.classList.toggle('text-danger', remaining < 0);
          };
          description.addEventListener('input', update);
          update();
        }
      });
    </script>
"""

PAGE_FOOT = """
  </body>
</html>
"""

PAGINATION = """
      {% if total_pages > 1 %}
        <nav>
          <ul class="pagination">
            <li class="page-item {% if page <= 1 %}disabled{% endif %}">
              <a class="page-link" href="{{ page_url(page - 1) }}">Previous</a>
            </li>
            <li class="page-item disabled"><span class="page-link">Page {{ page }} of {{ total_pages }}</span></li>
            <li class="page-item {% if page >= total_pages %}disabled{% endif %}">
              <a class="page-link" href="{{ page_url(page + 1) }}">Next</a>
            </li>
          </ul>
        </nav>
      {% endif %}
"""

PROJECT_CARDS = """
      <div class="row g-3" id="projectsContainer">
        {% for p in projects %}
          <div class="col-md-4 project-card" data-phase="{{ p['phase'] }}">
            <div class="card h-100 shadow-sm">
              <div class="card-body">
                <h2 class="h5 card-title"><a href="{{ url_for('project_detail', project_id=p['id']) }}">{{ p['title'] }}</a></h2>
                <span class="badge bg-secondary">{{ p['phase']|capitalize }}</span>
                <p class="card-text small mt-2">{{ p['short_description'] }}</p>
              </div>
              <div class="card-footer small text-muted">
                Starts {{ p['start_date'] }}{% if p['username'] %} · by {{ p['username'] }}{% endif %}
              </div>
            </div>
          </div>
        {% else %}
          <p class="text-muted">No projects found.</p>
        {% endfor %}
      </div>
"""

INDEX_TEMPLATE = (
    PAGE_HEAD
    + BASE_NAV
    + """
    <div class="container">
"""
    + FLASHES
    + """
      <div class="d-flex justify-content-between align-items-center mb-3">
        <h1 class="h3 mb-0">Recent Projects</h1>
        <span class="text-muted">{{ total_projects }} projects in total</span>
      </div>
      <div class="mb-3">
        {% for phase in phases %}
          <a class="btn btn-sm btn-outline-primary" href="{{ url_for('browse_phase', phase=phase) }}">{{ phase|capitalize }}</a>
        {% endfor %}
      </div>
"""
    + PROJECT_CARDS
    + """
    </div>
"""
    + PAGE_FOOT
)

SEARCH_TEMPLATE = (
    PAGE_HEAD
    + BASE_NAV
    + """
    <div class="container">
"""
    + FLASHES
    + """
      <h1 class="h3 mb-3">{{ page_title }}</h1>
      <form method="get" class="card p-3 mb-3 shadow-sm bg-white">
        <div class="row g-2 align-items-end">
          <div class="col-md-5">
            <label class="form-label" for="query">Title or description</label>
            <input class="form-control" type="text" id="query" name="query" maxlength="100" value="{{ filters.query or '' }}">
          </div>
          <div class="col-md-3">
            <label class="form-label" for="date">Start date</label>
            <input class="form-control" type="date" id="date" name="date" value="{{ filters.date or '' }}">
          </div>
          <div class="col-md-2">
            <label class="form-label" for="phase">Phase</label>
            <select class="form-select" id="phase" name="phase">
              <option value="">(All)</option>
              {% for phase in phases %}
                <option value="{{ phase }}" {% if filters.phase == phase %}selected{% endif %}>{{ phase|capitalize }}</option>
              {% endfor %}
            </select>
          </div>
          <div class="col-md-2">
            <button class="btn btn-primary w-100" type="submit">Search</button>
          </div>
        </div>
      </form>
      <p class="text-muted">{{ total_count }} matching projects</p>
"""
    + PROJECT_CARDS
    + PAGINATION
    + """
    </div>
"""
    + PAGE_FOOT
)

BROWSE_TEMPLATE = (
    PAGE_HEAD
    + BASE_NAV
    + """
    <div class="container">
"""
    + FLASHES
    + """
      <h1 class="h3 mb-3">{{ page_title }}</h1>
      <p class="text-muted">{{ total_count }} projects</p>
"""
    + PROJECT_CARDS
    + PAGINATION
    + """
    </div>
"""
    + PAGE_FOOT
)

PROJECT_DETAIL_TEMPLATE = (
    PAGE_HEAD
    + BASE_NAV
    + """
    <div class="container">
"""
    + FLASHES
    + """
      <div class="card shadow-sm bg-white mb-3">
        <div class="card-body">
          <h1 class="h3">{{ project['title'] }}</h1>
          <span class="badge bg-secondary">{{ project['phase']|capitalize }}</span>
          <p class="mt-3">{{ project['short_description'] }}</p>
          <dl class="row small mb-0">
            <dt class="col-sm-3">Start date</dt><dd class="col-sm-9">{{ project['start_date'] }}</dd>
            <dt class="col-sm-3">End date</dt><dd class="col-sm-9">{{ project['end_date'] or '-' }}</dd>
            <dt class="col-sm-3">Owner</dt><dd class="col-sm-9">{{ project['username'] }}</dd>
            <dt class="col-sm-3">Last updated</dt><dd class="col-sm-9">{{ project['updated_at'] }}</dd>
          </dl>
        </div>
        {% if can_edit %}
          <div class="card-footer text-end">
            <a class="btn btn-sm btn-outline-secondary" href="{{ url_for('edit_project', project_id=project['id']) }}">Edit</a>
            <form method="post" action="{{ url_for('delete_project', project_id=project['id']) }}"
                  style="display:inline-block" class="confirm-delete">
              <input type="hidden" name="csrf_token" value="{{ csrf_token() }}">
              <button class="btn btn-sm btn-outline-danger">Delete</button>
            </form>
          </div>
        {% endif %}
      </div>

      {% if related %}
        <h2 class="h5">More from {{ project['username'] }}</h2>
        <ul>
          {% for r in related %}
            <li><a href="{{ url_for('project_detail', project_id=r['id']) }}">{{ r['title'] }}</a>
              <span class="text-muted small">({{ r['phase'] }}, {{ r['start_date'] }})</span></li>
          {% endfor %}
        </ul>
      {% endif %}
      <script nonce="{{ csp_nonce() }}">
        document.querySelectorAll('form.confirm-delete').forEach(function(form) {
          form.addEventListener('submit', function(event) {
            if (!confirm('Delete this project?')) { event.preventDefault(); }
          });
        });
      </script>
    </div>
"""
    + PAGE_FOOT
)

DASHBOARD_TEMPLATE = (
    PAGE_HEAD
    + BASE_NAV
    + """
    <div class="container">
"""
    + FLASHES
    + """
      <div class="d-flex justify-content-between align-items-center mb-3">
        <h1 class="h3 mb-0">Welcome, {{ current_user['username'] }}</h1>
        <a class="btn btn-primary" href="{{ url_for('add_project') }}">+ New Project</a>
      </div>

      <div class="row g-2 mb-3">
        <div class="col">
          <div class="card stat-card text-center p-2" data-phase="all">
            <div class="h4 mb-0">{{ stats['total'] }}</div><div class="small">Total</div>
          </div>
        </div>
        {% for phase in phases %}
          <div class="col">
            <div class="card stat-card text-center p-2" data-phase="{{ phase }}">
              <div class="h4 mb-0">{{ stats[phase] }}</div><div class="small">{{ phase|capitalize }}</div>
            </div>
          </div>
        {% endfor %}
      </div>

      <div id="filterDisplay" class="alert alert-secondary py-1" style="display:none">
        Showing <strong id="currentFilter"></strong> projects · <a href="#" id="clearFilter">show all</a>
      </div>
      <p id="noResultsMessage" class="text-muted" style="display:none">No projects in this phase.</p>

      <table class="table table-striped table-hover align-middle bg-white shadow-sm" id="projectsContainer">
        <thead class="table-light">
          <tr><th>Title</th><th>Phase</th><th>Start</th><th>End</th><th></th></tr>
        </thead>
        <tbody>
          {% for p in projects %}
          <tr class="project-card" data-phase="{{ p['phase'] }}">
            <td><a href="{{ url_for('project_detail', project_id=p['id']) }}">{{ p['title'] }}</a></td>
            <td>{{ p['phase']|capitalize }}</td>
            <td class="small">{{ p['start_date'] }}</td>
            <td class="small">{{ p['end_date'] or '-' }}</td>
            <td class="text-end">
              <a class="btn btn-sm btn-outline-secondary" href="{{ url_for('edit_project', project_id=p['id']) }}">Edit</a>
              <form method="post" action="{{ url_for('delete_project', project_id=p['id']) }}"
                    style="display:inline-block" class="confirm-delete">
                <input type="hidden" name="csrf_token" value="{{ csrf_token() }}">
                <button class="btn btn-sm btn-outline-danger">Delete</button>
              </form>
            </td>
          </tr>
          {% else %}
          <tr><td colspan="5" class="text-center text-muted">No projects yet.</td></tr>
          {% endfor %}
        </tbody>
      </table>

      <script nonce="{{ csp_nonce() }}">
        // Clicking a stat card filters the table by phase.
        document.addEventListener('DOMContentLoaded', function() {
          var statCards = document.querySelectorAll('.stat-card');
          var rows = document.querySelectorAll('.project-card');
          var filterDisplay = document.getElementById('filterDisplay');
          var currentFilter = document.getElementById('currentFilter');
          var noResults = document.getElementById('noResultsMessage');
          var container = document.getElementById('projectsContainer');

          function filterByPhase(phase) {
            var visible = 0;
            rows.forEach(function(row) {
              var show = phase === 'all' || row.getAttribute('data-phase') === phase;
              row.style.display = show ? '' : 'none';
              if (show) { visible++; }
            });
            filterDisplay.style.display = phase === 'all' ? 'none' : 'block';
            currentFilter.textContent = phase.charAt(0).toUpperCase() + phase.slice(1);
            var empty = visible === 0 && phase !== 'all';
            noResults.style.display = empty ? 'block' : 'none';
            container.style.display = empty ? 'none' : '';
          }

          statCards.forEach(function(card) {
            card.addEventListener('click', function() {
              filterByPhase(card.getAttribute('data-phase'));
              statCards.forEach(function(c) { c.classList.remove('active'); });
              card.classList.add('active');
            });
          });
          document.getElementById('clearFilter').addEventListener('click', function(event) {
            event.preventDefault();
            filterByPhase('all');
            statCards.forEach(function(c) { c.classList.remove('active'); });
          });
          document.querySelectorAll('form.confirm-delete').forEach(function(form) {
            form.addEventListener('submit', function(event) {
              if (!confirm('Delete this project?')) { event.preventDefault(); }
            });
          });
        });
      </script>
    </div>
"""
    + PAGE_FOOT
)

PROJECT_FORM_TEMPLATE = (
    PAGE_HEAD
    + BASE_NAV
    + """
    <div class="container">
"""
    + FLASHES
    + """
      <h1 class="h3 mb-3">{% if project_id %}Edit Project{% else %}New Project{% endif %}</h1>

      <form method="post" class="card p-3 shadow-sm bg-white needs-validation" novalidate>
        <input type="hidden" name="csrf_token" value="{{ csrf_token() }}">
        <div class="mb-3">
          <label class="form-label" for="title">Title</label>
          <input class="form-control" type="text" id="title" name="title" minlength="3" maxlength="100"
                 value="{{ form.get('title', '') }}" required>
        </div>
        <div class="mb-3">
          <label class="form-label" for="short_description">Short description</label>
          <textarea class="form-control" id="short_description" name="short_description" rows="3"
                    minlength="10" maxlength="500" required>{{ form.get('short_description', '') }}</textarea>
          <div class="form-text" id="description-counter"></div>
        </div>
        <div class="row mb-3">
          <div class="col-md-4">
            <label class="form-label" for="start_date">Start date</label>
            <input class="form-control" type="date" id="start_date" name="start_date"
                   value="{{ form.get('start_date', '') }}" required>
          </div>
          <div class="col-md-4">
            <label class="form-label" for="end_date">End date (optional)</label>
            <input class="form-control" type="date" id="end_date" name="end_date"
                   value="{{ form.get('end_date') or '' }}">
          </div>
          <div class="col-md-4">
            <label class="form-label" for="phase">Phase</label>
            <select class="form-select" id="phase" name="phase" required>
              {% for phase in phases %}
                <option value="{{ phase }}" {% if form.get('phase', 'design') == phase %}selected{% endif %}>{{ phase|capitalize }}</option>
              {% endfor %}
            </select>
          </div>
        </div>
        <div class="d-flex justify-content-between">
          <a class="btn btn-outline-secondary" href="{{ url_for('dashboard') }}">Cancel</a>
          <button class="btn btn-success" type="submit">
            {% if project_id %}Save changes{% else %}Create project{% endif %}
          </button>
        </div>
      </form>
    </div>
"""
    + COMMON_SCRIPT
    + PAGE_FOOT
)

LOGIN_TEMPLATE = (
    PAGE_HEAD
    + BASE_NAV
    + """
    <div class="container" style="max-width: 480px">
"""
    + FLASHES
    + """
      <h1 class="h3 mb-3">Log in</h1>
      <form method="post" class="card p-3 shadow-sm bg-white needs-validation" novalidate>
        <input type="hidden" name="csrf_token" value="{{ csrf_token() }}">
        <div class="mb-3">
          <label class="form-label" for="username">Username</label>
          <input class="form-control" type="text" id="username" name="username" maxlength="50"
                 value="{{ form.get('username', '') }}" required>
        </div>
        <div class="mb-3">
          <label class="form-label" for="password">Password</label>
          <input class="form-control" type="password" id="password" name="password" maxlength="128" required>
        </div>
        <button class="btn btn-primary w-100" type="submit">Log in</button>
      </form>
      <p class="mt-3 small">No account yet? <a href="{{ url_for('register') }}">Register</a></p>
    </div>
"""
    + COMMON_SCRIPT
    + PAGE_FOOT
)

REGISTER_TEMPLATE = (
    PAGE_HEAD
    + BASE_NAV
    + """
    <div class="container" style="max-width: 480px">
"""
    + FLASHES
    + """
      <h1 class="h3 mb-3">Create an account</h1>
      <form method="post" class="card p-3 shadow-sm bg-white needs-validation" novalidate>
        <input type="hidden" name="csrf_token" value="{{ csrf_token() }}">
        <div class="mb-3">
          <label class="form-label" for="username">Username</label>
          <input class="form-control" type="text" id="username" name="username" minlength="3" maxlength="50"
                 pattern="[a-zA-Z0-9_]+" value="{{ form.get('username', '') }}" required>
        </div>
        <div class="mb-3">
          <label class="form-label" for="email">Email</label>
          <input class="form-control" type="email" id="email" name="email" maxlength="100"
                 value="{{ form.get('email', '') }}" required>
        </div>
        <div class="mb-3">
          <label class="form-label" for="password">Password</label>
          <input class="form-control" type="password" id="password" name="password" minlength="6" maxlength="128" required>
          <div class="form-text">At least one lowercase letter, one uppercase letter and one number.</div>
        </div>
        <div class="mb-3">
          <label class="form-label" for="confirm_password">Confirm password</label>
          <input class="form-control" type="password" id="confirm_password" name="confirm_password" required>
        </div>
        <button class="btn btn-success w-100" type="submit">Register</button>
      </form>
    </div>
"""
    + COMMON_SCRIPT
    + PAGE_FOOT
)

ABOUT_TEMPLATE = (
    PAGE_HEAD
    + BASE_NAV
    + """
    <div class="container">
"""
    + FLASHES
    + """
      <div class="card shadow-sm bg-white">
        <div class="card-body">
          <h1 class="h3">About Project Manager</h1>
          <p>
            Project Manager keeps track of projects from first sketch to delivery.
            Every project has a title, a short description, a start date, an
            optional end date and a phase.
          </p>
          <h2 class="h5">Phases</h2>
          <ul>
            {% for phase in phases %}<li>{{ phase|capitalize }}</li>{% endfor %}
          </ul>
          <p class="mb-0">
            Anyone can browse and search projects. Register to add your own;
            only you can edit or delete them.
          </p>
        </div>
      </div>
    </div>
"""
    + PAGE_FOOT
)

CONTACT_TEMPLATE = (
    PAGE_HEAD
    + BASE_NAV
    + """
    <div class="container" style="max-width: 640px">
"""
    + FLASHES
    + """
      <div class="card shadow-sm bg-white">
        <div class="card-body">
          <h1 class="h3">Contact Us</h1>
          <p>Questions, bug reports or feature requests are welcome.</p>
          <dl class="row mb-0">
            <dt class="col-sm-3">Email</dt><dd class="col-sm-9"><a href="mailto:{{ contact_email }}">{{ contact_email }}</a></dd>
          </dl>
        </div>
      </div>
    </div>
"""
    + PAGE_FOOT
)

ERROR_TEMPLATE = (
    PAGE_HEAD
    + BASE_NAV
    + """
    <div class="container">
      <div class="card shadow-sm bg-white">
        <div class="card-body">
          <h1 class="h3">{{ page_title }}</h1>
          <p>{{ message }}</p>
          {% if detail %}<pre class="small text-muted">{{ detail }}</pre>{% endif %}
          <a class="btn btn-outline-primary" href="{{ url_for('index') }}">Back to home</a>
        </div>
      </div>
    </div>
"""
    + PAGE_FOOT
)
